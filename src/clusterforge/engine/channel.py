"""Argument channel: typed worker arguments across the process boundary."""

from __future__ import annotations

import base64
import binascii
import dataclasses
import json
from dataclasses import dataclass
from typing import Any

from clusterforge._internal.errors import ConfigError, DispatchError

# Exported into every worker's environment, carrying its encoded payload.
RESPAWN_ENV = "CLUSTERFORGE_RESPAWN"

_ENVELOPE_KEYS = frozenset({"handler", "args_type", "args"})


@dataclass(frozen=True)
class RespawnPayload:
    """Decoded respawn envelope.

    Attributes:
        handler_id: Registered handler identifier (``module:qualname``).
        args_type: Qualified name of the WorkerArgs dataclass.
        args: Field values of the WorkerArgs instance.
    """

    handler_id: str
    args_type: str
    args: dict[str, Any]


def qualified_name(obj: type) -> str:
    """Return ``module:qualname`` for a class.

    Classes defined in a script are seen as ``__main__`` by the driver and
    ``__mp_main__`` by spawned children; both map to ``__main__``.
    """
    module = obj.__module__
    if module == "__mp_main__":
        module = "__main__"
    return f"{module}:{obj.__qualname__}"


_JSON_SCALARS = (str, int, float, bool, type(None))


def _check_value(owner: str, path: str, value: object) -> None:
    """Refuse values that would not decode back to an equal value."""
    if isinstance(value, _JSON_SCALARS):
        return
    if isinstance(value, list):
        for i, item in enumerate(value):
            _check_value(owner, f"{path}[{i}]", item)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                msg = (
                    f"Worker arguments {owner} are not JSON-serializable: "
                    f"{path} has non-string key {key!r}"
                )
                raise ConfigError(msg)
            _check_value(owner, f"{path}[{key!r}]", item)
        return
    if isinstance(value, tuple | set | frozenset) or dataclasses.is_dataclass(value):
        msg = (
            f"Worker arguments {owner} cannot carry a {type(value).__name__} in {path}: "
            f"it would decode as a list or dict, use those instead"
        )
        raise ConfigError(msg)
    msg = (
        f"Worker arguments {owner} are not JSON-serializable: "
        f"{path} holds {type(value).__name__}"
    )
    raise ConfigError(msg)


def encode_payload(handler_id: str, args: object) -> str:
    """Encode a handler id and its WorkerArgs into a printable token.

    The encoding is deterministic: JSON with sorted keys, then URL-safe
    base64. Fields may only hold JSON-native values (str, int, float, bool,
    None, lists and str-keyed dicts of those), so decoding always rebuilds
    an equal value.

    Args:
        handler_id: Identifier of the registered worker handler.
        args: A dataclass instance with JSON-compatible fields.

    Returns:
        ASCII payload string.

    Raises:
        ConfigError: If ``args`` is not a dataclass instance or a field holds
            a value that is not JSON-native.
    """
    if not dataclasses.is_dataclass(args) or isinstance(args, type):
        msg = f"Worker arguments must be a dataclass instance, got {type(args).__name__}"
        raise ConfigError(msg)

    owner = type(args).__name__
    fields = {f.name: getattr(args, f.name) for f in dataclasses.fields(args) if f.init}
    for name, value in fields.items():
        _check_value(owner, name, value)

    envelope = {
        "handler": handler_id,
        "args_type": qualified_name(type(args)),
        "args": fields,
    }
    try:
        raw = json.dumps(envelope, sort_keys=True, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        msg = f"Worker arguments {type(args).__name__} are not JSON-serializable: {exc}"
        raise ConfigError(msg) from exc

    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_payload(payload: str) -> RespawnPayload:
    """Decode a token produced by :func:`encode_payload`.

    Raises:
        DispatchError: On any corruption. Nothing is defaulted.
    """
    try:
        raw = base64.b64decode(payload.encode("ascii"), altchars=b"-_", validate=True)
        envelope = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        msg = f"Undecodable respawn payload: {exc}"
        raise DispatchError(msg) from exc

    if not isinstance(envelope, dict) or set(envelope) != _ENVELOPE_KEYS:
        msg = f"Malformed respawn envelope: expected keys {sorted(_ENVELOPE_KEYS)}"
        raise DispatchError(msg)

    handler_id = envelope["handler"]
    args_type = envelope["args_type"]
    args = envelope["args"]
    if not isinstance(handler_id, str) or not isinstance(args_type, str):
        msg = "Malformed respawn envelope: handler and args_type must be strings"
        raise DispatchError(msg)
    if not isinstance(args, dict):
        msg = f"Malformed respawn envelope: args must be an object, got {type(args).__name__}"
        raise DispatchError(msg)

    return RespawnPayload(handler_id=handler_id, args_type=args_type, args=args)


def build_args(args_type: type, payload: RespawnPayload) -> Any:
    """Construct the handler's WorkerArgs from a decoded payload.

    Args:
        args_type: Dataclass declared by the handler.
        payload: Decoded envelope.

    Returns:
        A fresh ``args_type`` instance.

    Raises:
        DispatchError: If the payload was encoded for another type or its
            fields do not fit ``args_type``.
    """
    expected = qualified_name(args_type)
    if payload.args_type != expected:
        msg = (
            f"Handler {payload.handler_id} expects {expected}, "
            f"payload carries {payload.args_type}"
        )
        raise DispatchError(msg)

    try:
        return args_type(**payload.args)
    except TypeError as exc:
        msg = f"Payload fields do not match {expected}: {exc}"
        raise DispatchError(msg) from exc
