"""Pydantic schemas for user profile attributes."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

# Editable through the API, but presented read-only to the user.
READ_ONLY_PROFILE_FIELDS = frozenset({"role"})


class ProfileAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: Optional[str] = None
    username: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    skin_type: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None
