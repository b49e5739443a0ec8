"""
Session Manager

Owns the current authenticated account and publishes every
authentication-state transition to subscribers (the sync core,
presentation code).

DESIGN DECISION: The session is an explicit object injected into its
dependents, not process-wide state. Each transition to a different
identity gets a fresh session_id so that work started under an old
session can recognize itself as stale.

GUARANTEES:
- A failed login or registration never leaves a half-set session
- logout() clears local state before touching the network and never raises
- Parent/child links broken by an interrupted registration are repaired
  by reconcile_children()
"""

from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError

from src.audit import AuditLogger
from src.config import get_settings
from src.errors import (
    AuthError,
    AuthErrorCode,
    DuplicateAccountError,
    FetchFailedError,
    InvalidInputError,
    NotFoundError,
    WeakCredentialError,
    WriteFailedError,
)
from src.models.account import Account, AccountUpdate, NewAccount, UserRole, normalize_email
from src.models.audit import AuditEventBuilder
from src.services.storage import IdentityProviderError, IdentityStoreInterface, StorageError


PROVIDER_CODES = {
    "invalid-email": AuthErrorCode.INVALID_EMAIL,
    "invalid-credential": AuthErrorCode.INVALID_CREDENTIALS,
    "user-not-found": AuthErrorCode.INVALID_CREDENTIALS,
    "wrong-password": AuthErrorCode.INVALID_CREDENTIALS,
    "too-many-requests": AuthErrorCode.TOO_MANY_ATTEMPTS,
}


def classify_provider_error(code: str) -> AuthErrorCode:
    """Map an identity provider error code onto the sign-in error taxonomy."""
    return PROVIDER_CODES.get(code, AuthErrorCode.UNKNOWN)


@dataclass(frozen=True)
class AuthState:
    """One snapshot of the authentication state."""
    account: Optional[Account]
    is_loading: bool
    session_id: Optional[UUID]

    @property
    def is_authenticated(self) -> bool:
        return self.account is not None


AuthListener = Callable[[AuthState], None]


class SessionManager:
    """
    Login, registration, logout and profile updates against an
    identity store.

    Usage:
        sessions = SessionManager(identity_store, audit_logger)
        unsubscribe = sessions.subscribe(on_auth_change)
        await sessions.login("ana@example.com", "secret1")
    """

    def __init__(
        self,
        identity_store: IdentityStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = identity_store
        self._audit = audit_logger or AuditLogger()
        self._settings = get_settings().auth
        self._state = AuthState(account=None, is_loading=False, session_id=None)
        self._listeners: list[AuthListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def current_state(self) -> AuthState:
        return self._state

    @property
    def current_account(self) -> Optional[Account]:
        return self._state.account

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """
        Register a listener for auth-state transitions.

        The listener is called immediately with the current state.
        Returns a function that removes the listener.
        """
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _set_loading(self, is_loading: bool) -> None:
        if self._state.is_loading != is_loading:
            self._publish(
                AuthState(self._state.account, is_loading, self._state.session_id)
            )

    def _start_session(self, account: Optional[Account]) -> None:
        session_id = uuid4() if account is not None else None
        self._publish(AuthState(account, self._state.is_loading, session_id))

    def _replace_account(self, account: Account) -> None:
        """Refresh the in-memory record without starting a new session."""
        self._publish(AuthState(account, self._state.is_loading, self._state.session_id))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Account:
        """
        Sign in with email and password.

        Raises:
            AuthError: code is one of AuthErrorCode
        """
        email = normalize_email(email)
        self._set_loading(True)
        try:
            try:
                account_id = await self._store.authenticate(email, password)
                account = await self._store.get_account(account_id)
            except IdentityProviderError as e:
                code = classify_provider_error(e.code)
                await self._audit.log(AuditEventBuilder.login_failed(email, e.code))
                raise AuthError(code) from e
            except StorageError as e:
                await self._audit.log(AuditEventBuilder.login_failed(email, "storage"))
                raise AuthError(AuthErrorCode.UNKNOWN) from e

            if account is None:
                # Identity without a directory record: refuse the session.
                await self._audit.log(AuditEventBuilder.login_failed(email, "missing-record"))
                await self._sign_out_quietly(account_id)
                raise AuthError(AuthErrorCode.UNKNOWN, "Account record not found.")

            self._start_session(account)
            await self._audit.log(
                AuditEventBuilder.login_succeeded(account.id, account.role.value)
            )
            return account
        finally:
            self._set_loading(False)

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        role: UserRole | str,
        parent_id: Optional[str] = None,
    ) -> Account:
        """
        Create an account.

        A child is linked to parent_id. When the signed-in parent registers
        the child, the parent stays signed in; otherwise the new account
        becomes the session.

        Raises:
            WeakCredentialError: password shorter than the minimum
            InvalidInputError: bad name/email/role, or unknown parent
            DuplicateAccountError: email already registered
            WriteFailedError: store failure
        """
        email = normalize_email(email)

        if len(password) < self._settings.min_password_length:
            message = (
                f"Password must be at least {self._settings.min_password_length} characters."
            )
            await self._audit.log(
                AuditEventBuilder.registration_failed(email, "weak-password", message)
            )
            raise WeakCredentialError(message)

        try:
            role = UserRole(role)
            draft = NewAccount(
                name=name,
                email=email,
                role=role,
                parent_id=parent_id if role == UserRole.CHILD else None,
            )
        except (ValueError, ValidationError) as e:
            await self._audit.log(
                AuditEventBuilder.registration_failed(email, "invalid-input", str(e))
            )
            raise InvalidInputError(str(e)) from e

        self._set_loading(True)
        try:
            if draft.role == UserRole.CHILD:
                await self._require_parent(draft.parent_id)

            try:
                account = await self._store.create_account(draft, password)
            except IdentityProviderError as e:
                await self._audit.log(
                    AuditEventBuilder.registration_failed(email, e.code, str(e))
                )
                if e.code == "email-already-in-use":
                    raise DuplicateAccountError(
                        "Email is already in use. Please use a different email."
                    ) from e
                if e.code == "weak-password":
                    raise WeakCredentialError(
                        "Password is too weak. Please use a stronger password."
                    ) from e
                if e.code == "invalid-email":
                    raise InvalidInputError("Invalid email address.") from e
                raise WriteFailedError(f"Registration failed: {e}") from e
            except StorageError as e:
                await self._audit.log(
                    AuditEventBuilder.registration_failed(email, "storage", str(e))
                )
                raise WriteFailedError(f"Registration failed: {e}") from e

            acting = self._state.account
            await self._audit.log(
                AuditEventBuilder.account_registered(
                    account.id,
                    account.role.value,
                    account.parent_id,
                    actor_id=acting.id if acting else None,
                )
            )

            if account.role == UserRole.CHILD:
                await self._link_child(account.parent_id, account.id)

            current = self._state.account
            if current is not None and current.id == account.parent_id:
                return account
            self._start_session(account)
            return account
        finally:
            self._set_loading(False)

    async def _require_parent(self, parent_id: str) -> Account:
        try:
            parents = await self._store.query_accounts(
                account_id=parent_id, role=UserRole.PARENT
            )
        except StorageError as e:
            await self._audit.log_error(
                "parent_lookup_failed", str(e), details={"parent_id": parent_id}
            )
            raise WriteFailedError(f"Could not verify parent account: {e}") from e
        if not parents:
            raise InvalidInputError(f"Parent account not found: {parent_id}")
        return parents[0]

    async def _link_child(self, parent_id: str, child_id: str) -> None:
        """
        Append the child to the parent's children.

        The child record already exists at this point; if the append fails
        the reconciliation pass runs immediately, and if that fails too the
        link stays missing until the next reconcile_children() call.
        """
        try:
            children = await self._store.append_child(parent_id, child_id)
        except StorageError as e:
            await self._audit.log_error(
                "child_link_failed",
                str(e),
                details={"parent_id": parent_id, "child_id": child_id},
            )
            try:
                await self.reconcile_children(parent_id)
            except (NotFoundError, WriteFailedError) as heal_error:
                await self._audit.log_error(
                    "child_link_unrepaired",
                    str(heal_error),
                    details={"parent_id": parent_id, "child_id": child_id},
                )
            return

        await self._audit.log(AuditEventBuilder.child_linked(parent_id, child_id, children))
        current = self._state.account
        if current is not None and current.id == parent_id:
            # Concurrent links may finish out of order; never drop a known child.
            merged = list(dict.fromkeys([*current.children, *children]))
            self._replace_account(current.model_copy(update={"children": merged}))

    async def reconcile_children(self, parent_id: str) -> list[str]:
        """
        Repair a parent's children list from the children's parent_id.

        Existing order is kept; missing ids are appended in registration
        order. Returns the corrected list.

        Raises:
            NotFoundError: parent_id is not a parent account
            WriteFailedError: store failure
        """
        try:
            parent = await self._store.get_account(parent_id)
            if parent is None or not parent.is_parent:
                raise NotFoundError(f"Parent account not found: {parent_id}")
            linked = await self._store.query_accounts(
                parent_id=parent_id, role=UserRole.CHILD
            )
            missing = [c.id for c in linked if c.id not in parent.children]
            children = list(parent.children)
            # Append one id at a time so links made meanwhile are kept
            for child_id in missing:
                children = await self._store.append_child(parent_id, child_id)
        except StorageError as e:
            await self._audit.log_error(
                "children_reconcile_failed", str(e), details={"parent_id": parent_id}
            )
            raise WriteFailedError(f"Could not reconcile children: {e}") from e

        await self._audit.log(AuditEventBuilder.children_reconciled(parent_id, missing))
        current = self._state.account
        if current is not None and current.id == parent_id:
            self._replace_account(current.model_copy(update={"children": children}))
        return children

    async def logout(self) -> None:
        """
        Clear the session. Never raises.

        Local state is cleared before the identity provider is contacted;
        provider failures go to the audit log only.
        """
        account = self._state.account
        self._start_session(None)
        account_id = account.id if account else None
        if await self._sign_out_quietly(account_id):
            await self._audit.log(AuditEventBuilder.logout(account_id))

    async def _sign_out_quietly(self, account_id: Optional[str]) -> bool:
        try:
            await self._store.sign_out()
        except Exception as e:
            await self._audit.log(AuditEventBuilder.logout_failed(account_id, str(e)))
            return False
        return True

    async def update_profile(self, fields: dict) -> Optional[Account]:
        """
        Merge profile fields into the current account and persist them.

        Returns None (and does nothing) when nobody is signed in.

        Raises:
            InvalidInputError: unknown or invalid fields
            WriteFailedError: store failure
        """
        account = self._state.account
        if account is None:
            return None

        try:
            changes = AccountUpdate(**fields).changes()
        except ValidationError as e:
            raise InvalidInputError(str(e)) from e
        if not changes:
            return account

        try:
            await self._store.update_account(account.id, changes)
        except StorageError as e:
            await self._audit.log(
                AuditEventBuilder.write_failed(
                    "update_profile", "account", account.id, str(e), account.id
                )
            )
            raise WriteFailedError(f"Failed to update profile: {e}") from e

        await self._audit.log(AuditEventBuilder.profile_updated(account.id, sorted(changes)))

        current = self._state.account
        if current is None or current.id != account.id:
            # Signed out (or switched account) while the write was in flight.
            return None
        updated = current.model_copy(update=changes)
        self._replace_account(updated)
        return updated

    async def restore(self, account_id: str) -> Optional[Account]:
        """
        Resume a session for an identity that is still signed in at the
        provider (app start).

        If the directory record is gone, the provider session is ended and
        no session is started.
        """
        self._set_loading(True)
        try:
            try:
                account = await self._store.get_account(account_id)
            except StorageError as e:
                await self._audit.log_error(
                    "session_restore_failed", str(e), details={"account_id": account_id}
                )
                self._start_session(None)
                raise AuthError(AuthErrorCode.UNKNOWN, "Error loading user data.") from e

            if account is None:
                await self._audit.log_error(
                    "session_restore_failed",
                    "Account record does not exist",
                    details={"account_id": account_id},
                )
                await self._sign_out_quietly(account_id)
                self._start_session(None)
                return None

            self._start_session(account)
            await self._audit.log(AuditEventBuilder.session_restored(account.id))
            return account
        finally:
            self._set_loading(False)

    async def list_children(self) -> list[Account]:
        """Directory records of the signed-in parent's children, in link order."""
        account = self._state.account
        if account is None or not account.is_parent:
            return []
        children = []
        try:
            for child_id in account.children:
                child = await self._store.get_account(child_id)
                if child is not None:
                    children.append(child)
        except StorageError as e:
            await self._audit.log(
                AuditEventBuilder.fetch_failed("children", 1, str(e), account.id)
            )
            raise FetchFailedError("children", 1, f"Failed to load children: {e}") from e
        return children
