"""Pydantic schemas for identities and authentication flows."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dermacheck.schemas.profile import ProfileAttributes

MAX_PASSWORD_LEN = 72  # bcrypt limit
MIN_PASSWORD_LEN = 6


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    display_name: str
    profile: ProfileAttributes = Field(default_factory=ProfileAttributes)

    @classmethod
    def from_provider_user(cls, user_id: str, email: Optional[str], metadata: Optional[Mapping[str, Any]]) -> "Identity":
        metadata = metadata or {}
        email = email or ""
        name = metadata.get("full_name") or metadata.get("name") or email.split("@")[0] or "User"
        return cls(id=str(user_id), email=email, display_name=name)


class Credentials(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def email_shape_guard(cls, v: str) -> str:
        v = v.strip()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("email must look like name@domain.tld")
        return v

    @field_validator("password")
    @classmethod
    def password_length_guard(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_LEN:
            raise ValueError(f"password must be <= {MAX_PASSWORD_LEN} bytes for bcrypt")
        return v


class Registration(Credentials):
    display_name: str

    @field_validator("password")
    @classmethod
    def password_strength_guard(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LEN:
            raise ValueError(f"password should be at least {MIN_PASSWORD_LEN} characters")
        return v


class RegistrationResult(BaseModel):
    """Sign-up outcome; an account awaiting email confirmation carries no identity."""

    model_config = ConfigDict(frozen=True)

    identity: Optional[Identity] = None
    pending_confirmation: bool = False
