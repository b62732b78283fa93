"""
Account and profile models shared by the flows and the admin protocol.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        candidate = str(value or "").strip().lower()
        for role in cls:
            if role.value == candidate:
                return role
        return None


class Account(BaseModel):
    """An identity-provider account. Owned by the provider, never stored here."""

    uid: str
    email: Optional[str] = None
    is_admin: bool = False
    display_name: Optional[str] = None
    disabled: bool = False

    model_config = {"frozen": True}

    @property
    def normalized_email(self) -> str:
        return (self.email or "").strip().lower()


class ProfileRecord(BaseModel):
    """Mirror of an account's role kept in the users collection."""

    uid: str
    email: Optional[str] = None
    role: Role = Role.USER
    updated_at: datetime
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "uid": self.uid,
            "email": self.email,
            "role": self.role.value,
            "isAdmin": self.is_admin,
            "updatedAt": self.updated_at,
        }
        if self.display_name:
            document["displayName"] = self.display_name
        if self.created_at is not None:
            document["createdAt"] = self.created_at
        return document


class NewAccount(BaseModel):
    email: str
    password: str = Field(..., repr=False)
    display_name: Optional[str] = None
