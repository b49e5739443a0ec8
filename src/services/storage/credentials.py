"""
Credential hashing shared by the identity store backends.

Passwords are never stored; only a salted werkzeug hash
("pbkdf2:sha256:<iterations>$<salt>$<digest>").
"""

import time
from typing import Callable, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from src.config import get_settings


def hash_password(password: str, iterations: Optional[int] = None) -> str:
    iterations = iterations or get_settings().auth.password_hash_iterations
    return generate_password_hash(password, method=f"pbkdf2:sha256:{iterations}")


def verify_password(password: str, encoded: str) -> bool:
    # Unknown or malformed hash formats never verify
    try:
        return check_password_hash(encoded, password)
    except ValueError:
        return False


class LoginThrottle:
    """
    Counts consecutive failed sign-ins per email.

    After max_failures the email is locked for lockout_seconds
    (the provider's 'too-many-requests'). A successful sign-in resets it.
    """

    def __init__(
        self,
        max_failures: Optional[int] = None,
        lockout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        auth = get_settings().auth
        self._max_failures = max_failures or auth.max_failed_logins
        self._lockout_seconds = (
            auth.lockout_seconds if lockout_seconds is None else lockout_seconds
        )
        self._clock = clock
        self._failures: dict[str, list[float]] = {}

    def is_locked(self, email: str) -> bool:
        failures = self._failures.get(email, [])
        if len(failures) < self._max_failures:
            return False
        if self._clock() - failures[-1] >= self._lockout_seconds:
            self.reset(email)
            return False
        return True

    def record_failure(self, email: str) -> None:
        self._failures.setdefault(email, []).append(self._clock())

    def reset(self, email: str) -> None:
        self._failures.pop(email, None)
