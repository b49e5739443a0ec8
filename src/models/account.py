"""
Account Models

An account is a login identity tagged as parent or child.
Parents own an ordered list of child ids; every child points back at
exactly one parent through parent_id.

DESIGN DECISION: The one-to-many link is stored on both sides, as the
directory does. The parent side can lag behind after an interrupted
registration; SessionManager.reconcile_children() repairs it.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class UserRole(str, Enum):
    """Account roles."""
    PARENT = "parent"
    CHILD = "child"


def normalize_email(email: str) -> str:
    """Lowercase and strip an email address."""
    return email.strip().lower()


class NewAccount(BaseModel):
    """
    Directory fields supplied at registration.

    The store assigns the id and creation time.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=254,
        description="Login email, stored lowercased"
    )
    role: UserRole = Field(
        ...,
        description="parent or child"
    )
    avatar: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Image reference for the profile picture"
    )
    parent_id: Optional[str] = Field(
        default=None,
        description="Owning parent account (children only)"
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = normalize_email(v)
        local, _, domain = v.partition("@")
        if not local or not domain or "." not in domain:
            raise ValueError(f"Invalid email address: {v}")
        return v

    @model_validator(mode="after")
    def validate_parent_link(self) -> "NewAccount":
        if self.role == UserRole.CHILD and not self.parent_id:
            raise ValueError("A child account must reference a parent account")
        if self.role == UserRole.PARENT and self.parent_id:
            raise ValueError("A parent account cannot have a parent")
        return self


class Account(NewAccount):
    """
    A directory record as held by the session.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque, stable account identifier"
    )
    children: list[str] = Field(
        default_factory=list,
        description="Linked child account ids, in link order"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the account was registered"
    )

    @field_validator("children")
    @classmethod
    def dedupe_children(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def validate_children(self) -> "Account":
        if self.role == UserRole.CHILD and self.children:
            raise ValueError("A child account cannot have children")
        return self

    @property
    def is_parent(self) -> bool:
        return self.role == UserRole.PARENT

    def visible_user_ids(self) -> list[str]:
        """
        Account ids whose expenses and budgets this account may read.

        A child sees itself; a parent sees itself plus every linked child.
        """
        if self.is_parent:
            return [self.id, *[c for c in self.children if c != self.id]]
        return [self.id]

    def can_see(self, user_id: str) -> bool:
        return user_id in self.visible_user_ids()


class AccountUpdate(BaseModel):
    """
    Profile fields a user may change about themselves.

    Identity fields (email, role, links) are not part of a profile update.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=500)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)
