from __future__ import annotations

import re
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


PIN_PATTERN = re.compile(r"^[0-9]{4}$")


def is_valid_pin(pin: Any) -> bool:
    return isinstance(pin, str) and bool(PIN_PATTERN.fullmatch(pin))


class SavedCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)


class Session(BaseModel):
    """
    Immutable snapshot of authentication status. New snapshots are produced
    by `portal.core.session.state.reduce`; nothing mutates one in place.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_authenticated: bool = False
    token: Optional[str] = Field(default=None, repr=False)
    is_loading: bool = False
    error: Optional[str] = None
    saved_credentials: SavedCredentials = Field(default_factory=SavedCredentials)
    # set by an interactive password or PIN login in this process; a token
    # rehydrated at cold start leaves it False
    unlocked: bool = False


class StoredCredentials(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    username: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)
    remember_me: bool = False


class PinRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    pin: str = Field(repr=False)
    enabled: bool = True

    @field_validator("pin")
    @classmethod
    def _four_digits(cls, v: str) -> str:
        if not is_valid_pin(v):
            raise ValueError("PIN must be exactly 4 digits")
        return v


class UserProfile(BaseModel):
    """User record returned by the login endpoint. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: Optional[Union[int, str]] = Field(default=None, validation_alias=AliasChoices("user_id", "userId", "id"))
    username: Optional[str] = None
    first_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("first_name", "firstName"))
    last_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("last_name", "lastName"))
    full_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("full_name", "fullName"))
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None

    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        parts = [p for p in (self.first_name, self.last_name) if p]
        if parts:
            return " ".join(parts)
        return self.username or ""


class LoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1, repr=False)
    user_profile: Optional[UserProfile] = Field(default=None, validation_alias=AliasChoices("userProfile", "userData", "user_profile"))

    @field_validator("token", mode="before")
    @classmethod
    def _unwrap_access_token(cls, v: Any) -> Any:
        # some deployments return {"token": {"accessToken": "...", "expiresAt": ...}}
        if isinstance(v, dict):
            return v.get("accessToken") or v.get("access_token")
        return v
