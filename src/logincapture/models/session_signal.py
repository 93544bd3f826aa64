"""Wire model for ``LOGIN_STATUS`` messages posted by the in-page probe."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOGIN_STATUS = "LOGIN_STATUS"


class SessionSignal(BaseModel):
    """One reported snapshot of navigation URL, cookies and inferred identity.

    Wire shape::

        {"type": "LOGIN_STATUS", "url": str, "cookies": str,
         "username": str | null, "userId": str | null}
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    type: Literal["LOGIN_STATUS"]
    url: str = Field(min_length=1)
    cookies: str
    username: str | None = None
    user_id: str | None = Field(default=None, alias="userId")

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("username", mode="before")
    @classmethod
    def _normalize_username(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lstrip("@")
            return value or None
        return value

    @field_validator("user_id", mode="before")
    @classmethod
    def _normalize_user_id(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    def to_wire(self) -> str:
        """Serialize using the camelCase wire field names."""
        return self.model_dump_json(by_alias=True)
