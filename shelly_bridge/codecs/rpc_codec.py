"""Codec helpers for the device JSON-RPC websocket protocol."""

from __future__ import annotations

from collections.abc import Mapping
import hashlib
import json
import logging
from typing import Any

from pydantic import ValidationError

from ..const import (
    AUTH_ALGORITHM,
    AUTH_HA2_SOURCE,
    AUTH_QOP,
    AUTH_USERNAME,
    CLIENT_SRC,
    JSONRPC_VERSION,
)
from .rpc_models import AuthChallenge, DeviceInfo, RpcFrame

_LOGGER = logging.getLogger(__name__)


def encode_request(
    request_id: int,
    method: str,
    params: Mapping[str, Any] | None = None,
    *,
    src: str = CLIENT_SRC,
    auth: Mapping[str, Any] | None = None,
) -> str:
    """Serialise one request as a compact single-line JSON frame."""

    payload: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "src": src,
        "id": request_id,
        "method": method,
        "params": dict(params or {}),
    }
    if auth is not None:
        payload["auth"] = dict(auth)
    return json.dumps(payload, separators=(",", ":"))


def decode_frame(text: str | bytes) -> RpcFrame | None:
    """Return a parsed inbound frame, or None when it is not valid JSON-RPC."""

    try:
        raw = json.loads(text)
    except (TypeError, ValueError):
        _LOGGER.debug("Ignoring non-JSON frame")
        return None
    if not isinstance(raw, dict):
        return None
    try:
        return RpcFrame.model_validate(raw)
    except ValidationError:
        _LOGGER.debug("Ignoring malformed frame: %s", raw)
        return None


def decode_device_info(result: Any) -> DeviceInfo | None:
    """Return device identity from a ``Shelly.GetDeviceInfo`` result."""

    if not isinstance(result, Mapping):
        return None
    try:
        return DeviceInfo.model_validate(result)
    except ValidationError:
        return None


def parse_auth_challenge(message: Any) -> AuthChallenge | None:
    """Parse the JSON challenge carried in a 401 error message."""

    raw: Any = message
    if isinstance(message, str):
        try:
            raw = json.loads(message)
        except ValueError:
            return None
    if not isinstance(raw, Mapping):
        return None
    try:
        return AuthChallenge.model_validate(raw)
    except ValidationError:
        return None


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def build_digest_auth(
    challenge: AuthChallenge,
    password: str,
    *,
    cnonce: int,
    username: str = AUTH_USERNAME,
) -> dict[str, Any]:
    """Return the ``auth`` block answering ``challenge``.

    ``HA1 = H(user:realm:password)``, ``HA2 = H(dummy_method:dummy_uri)`` and
    ``response = H(HA1:nonce:nc:cnonce:auth:HA2)`` with SHA-256.
    """

    ha1 = _sha256(f"{username}:{challenge.realm}:{password}")
    ha2 = _sha256(AUTH_HA2_SOURCE)
    response = _sha256(
        ":".join(
            (ha1, str(challenge.nonce), str(challenge.nc), str(cnonce), AUTH_QOP, ha2)
        )
    )
    return {
        "realm": challenge.realm,
        "username": username,
        "nonce": challenge.nonce,
        "cnonce": cnonce,
        "response": response,
        "algorithm": AUTH_ALGORITHM,
    }


__all__ = [
    "build_digest_auth",
    "decode_device_info",
    "decode_frame",
    "encode_request",
    "parse_auth_challenge",
]
