"""Pydantic models for the device JSON-RPC wire protocol."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RpcErrorBody(BaseModel):
    """Error object carried by a failed response."""

    model_config = ConfigDict(extra="ignore")

    code: int
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _stringify_message(cls, value: Any) -> Any:
        """Devices occasionally send structured messages; keep them as text."""

        if value is None:
            return ""
        if not isinstance(value, str):
            return str(value)
        return value


class RpcFrame(BaseModel):
    """Any inbound frame: a response, an error, or an unsolicited push."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None
    src: str | None = None
    dst: str | None = None
    method: str | None = None
    params: dict[str, Any] | None = None
    result: Any = None
    error: RpcErrorBody | None = None

    @property
    def is_push(self) -> bool:
        """Return True for notifications without a correlation id."""

        return self.method is not None and self.id is None


class DeviceInfo(BaseModel):
    """Subset of ``Shelly.GetDeviceInfo`` the bridge relies on."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None
    model: str | None = None
    gen: int | None = None
    mac: str | None = None
    app: str | None = None
    fw_id: str | None = None
    ver: str | None = None
    auth_en: bool | None = None


class AuthChallenge(BaseModel):
    """Digest challenge embedded in a 401 error message."""

    model_config = ConfigDict(extra="ignore")

    auth_type: str = "digest"
    nonce: int | str
    nc: int = 1
    realm: str
    algorithm: str = Field(default="SHA-256")


__all__ = ["AuthChallenge", "DeviceInfo", "RpcErrorBody", "RpcFrame"]
