"""
Call data codec.

An encoded call is a 4-byte operation id followed by an optional UTF-8 JSON
payload ``{"args": [...], "kwargs": {...}}``. The gateway only needs the
fixed-width prefix to authorize a call; arguments are decoded after the
verdict, and only when the call is allowed through.
"""

from __future__ import annotations

import json
from typing import Any

from access_gate.errors import MalformedCall
from access_gate.policy.schema import OPERATION_ID_SIZE, OperationId, operation_id


def encode_call(op: str | bytes, *args: Any, **kwargs: Any) -> bytes:
    """Encode a call to ``op`` with JSON-serializable arguments."""
    prefix = operation_id(op)
    if not args and not kwargs:
        return prefix
    payload = json.dumps({"args": list(args), "kwargs": kwargs}, sort_keys=True)
    return prefix + payload.encode("utf-8")


def split_call(data: bytes) -> tuple[OperationId, bytes]:
    """Split encoded call data into its operation id and raw payload."""
    if len(data) < OPERATION_ID_SIZE:
        raise MalformedCall(
            f"Call data is {len(data)} bytes, shorter than an operation id"
        )
    return bytes(data[:OPERATION_ID_SIZE]), bytes(data[OPERATION_ID_SIZE:])


def decode_arguments(payload: bytes) -> tuple[list[Any], dict[str, Any]]:
    """Decode the payload part of a call into positional and keyword arguments."""
    if not payload:
        return [], {}
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedCall(f"Call payload is not valid JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise MalformedCall("Call payload must be a JSON object")
    args = decoded.get("args", [])
    kwargs = decoded.get("kwargs", {})
    if not isinstance(args, list) or not isinstance(kwargs, dict):
        raise MalformedCall("Call payload 'args' must be a list and 'kwargs' an object")
    return args, kwargs
