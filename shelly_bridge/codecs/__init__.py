"""Wire codecs for the device RPC protocol."""

from .rpc_codec import (
    build_digest_auth,
    decode_device_info,
    decode_frame,
    encode_request,
    parse_auth_challenge,
)
from .rpc_models import AuthChallenge, DeviceInfo, RpcErrorBody, RpcFrame

__all__ = [
    "AuthChallenge",
    "DeviceInfo",
    "RpcErrorBody",
    "RpcFrame",
    "build_digest_auth",
    "decode_device_info",
    "decode_frame",
    "encode_request",
    "parse_auth_challenge",
]
