# Copyright 2023 Canonical Ltd.
# See LICENSE file for licensing details.

"""Strict decoding of raw receiver documents into notifier config dataclasses.

Decoding is two-phase: the keys of the raw mapping are first split into declared and
leftover keys, then each declared key is coerced according to its field's annotated type
and applied onto a copy of the type's default instance. Leftover keys are a hard error.
"""

import dataclasses
import functools
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from notifier_types import Duration, Secret

logger = logging.getLogger(__name__)

StringMap = Mapping[str, str]


class ConfigError(Exception):
    """Base class for receiver configuration errors."""

    def __init__(self, message: str, receiver_type: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.receiver_type = receiver_type
        self.context: List[str] = []

    def add_context(self, context: str) -> None:
        """Prefix the message with where in the document the error happened."""
        self.context.insert(0, context)

    def __str__(self) -> str:
        return ": ".join(self.context + [self.message])


class MalformedValueError(ConfigError):
    """A declared field's raw value cannot be converted to the field's type."""

    def __init__(self, receiver_type: str, field: str, reason: str):
        super().__init__(
            f"invalid value for {field!r} in {receiver_type} config: {reason}", receiver_type
        )
        self.field = field


class MissingFieldError(ConfigError):
    """A mandatory field is absent or empty after decoding."""

    def __init__(self, receiver_type: str, field: str, message: str):
        super().__init__(message, receiver_type)
        self.field = field


class UnknownFieldError(ConfigError):
    """The raw document has keys that no declared field matches."""

    def __init__(self, receiver_type: str, keys: List[str]):
        super().__init__(
            f"unknown fields in {receiver_type} config: {', '.join(keys)}", receiver_type
        )
        self.keys = keys


class DuplicateHeaderError(ConfigError):
    """Two header names collapse onto the same name once normalized."""

    def __init__(self, receiver_type: str, header: str):
        super().__init__(f'duplicate header "{header}" in {receiver_type} config', receiver_type)
        self.field = "headers"
        self.header = header


def string_map(default: Optional[Mapping[str, str]] = None):
    """Declare a read-only string-to-string map field."""
    items = dict(default or {})
    return dataclasses.field(default_factory=lambda: MappingProxyType(dict(items)))


def renamed(name: str, default: Any = ""):
    """Declare a field whose document key differs from the attribute name."""
    return dataclasses.field(default=default, metadata={"name": name})


def omitempty(default: Any = ""):
    """Declare a field that is left out of the encoded document when empty."""
    return dataclasses.field(default=default, metadata={"omitempty": True})


def inline(default: Any):
    """Declare a nested config whose fields sit at the top level of the document."""
    return dataclasses.field(default=default, metadata={"inline": True})


def _text(receiver_type: str, key: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise MalformedValueError(
        receiver_type, key, f"expected a string, got {type(value).__name__}"
    )


def _secret(receiver_type: str, key: str, value: Any) -> Secret:
    if isinstance(value, Secret):
        return value
    return Secret(_text(receiver_type, key, value))


def _bool(receiver_type: str, key: str, value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedValueError(
            receiver_type, key, f"expected a boolean, got {type(value).__name__}"
        )
    return value


def _optional_bool(receiver_type: str, key: str, value: Any) -> Optional[bool]:
    if value is None:
        return None
    return _bool(receiver_type, key, value)


def _duration(receiver_type: str, key: str, value: Any) -> Duration:
    if value is None:
        return Duration(0)
    if isinstance(value, Duration):
        return value
    try:
        return Duration.parse(_text(receiver_type, key, value))
    except ValueError as e:
        raise MalformedValueError(receiver_type, key, str(e)) from e


def _string_map(receiver_type: str, key: str, value: Any) -> StringMap:
    if value is None:
        return MappingProxyType({})
    if not isinstance(value, Mapping):
        raise MalformedValueError(
            receiver_type, key, f"expected a mapping, got {type(value).__name__}"
        )
    return MappingProxyType(
        {_text(receiver_type, key, k): _text(receiver_type, key, v) for k, v in value.items()}
    )


_COERCERS: Dict[Any, Callable[[str, str, Any], Any]] = {
    str: _text,
    Secret: _secret,
    bool: _bool,
    Optional[bool]: _optional_bool,
    Duration: _duration,
    StringMap: _string_map,
}


@functools.lru_cache(maxsize=None)
def declared_keys(cls) -> Dict[str, Tuple[Tuple[str, ...], dataclasses.Field]]:
    """Map each document key of `cls` to its attribute path and field.

    Inline fields contribute their own fields' keys, so the path of an inline key has two
    attribute names.
    """
    keys = {}
    for field in dataclasses.fields(cls):
        if field.metadata.get("inline"):
            for key, (path, nested) in declared_keys(field.type).items():
                keys[key] = ((field.name,) + path, nested)
        else:
            keys[field.metadata.get("name", field.name)] = ((field.name,), field)
    return keys


def _replace(instance, updates: Dict[Tuple[str, ...], Any]):
    """Return a copy of the frozen `instance` with the values at the given paths replaced."""
    direct: Dict[str, Any] = {}
    nested: Dict[str, Dict[Tuple[str, ...], Any]] = {}
    for path, value in updates.items():
        if len(path) == 1:
            direct[path[0]] = value
        else:
            nested.setdefault(path[0], {})[path[1:]] = value
    for attr, sub_updates in nested.items():
        direct[attr] = _replace(getattr(instance, attr), sub_updates)
    return dataclasses.replace(instance, **direct)


def decode(cls, data: Optional[Mapping[str, Any]]):
    """Decode a raw document into a validated instance of the config class `cls`.

    `cls` must provide `name`, `default()`, `normalized()` and `check_required()`.

    Raises:
        MalformedValueError: a declared field has a value of the wrong shape.
        MissingFieldError: a mandatory field is absent or empty.
        DuplicateHeaderError: header names collide once normalized.
        UnknownFieldError: the document has keys that are not declared.
    """
    receiver_type = cls.name
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        err = MalformedValueError(
            receiver_type, "<root>", f"expected a mapping, got {type(data).__name__}"
        )
        logger.error("%s", err)
        raise err

    keys = declared_keys(cls)
    leftover = sorted(str(key) for key in data if key not in keys)

    updates = {}
    try:
        for key, value in data.items():
            if key not in keys:
                continue
            path, field = keys[key]
            updates[path] = _COERCERS[field.type](receiver_type, key, value)

        config = _replace(cls.default(), updates).normalized()
        config.check_required()
    except ConfigError as e:
        logger.error("%s", e)
        raise

    if leftover:
        err = UnknownFieldError(receiver_type, leftover)
        logger.error("%s", err)
        raise err

    logger.debug("decoded %s config (%d fields set)", receiver_type, len(updates))
    return config


def _is_empty(value: Any) -> bool:
    return value is None or (not isinstance(value, bool) and not value)


def _encode_value(value: Any) -> Any:
    if isinstance(value, Secret):
        # An unset secret encodes as null; there is nothing to redact.
        return str(value) if value else None
    if isinstance(value, Duration):
        return str(value)
    if isinstance(value, Mapping):
        return dict(value)
    return value


def encode(config) -> Dict[str, Any]:
    """Encode a config dataclass into a plain document with secrets redacted."""
    document: Dict[str, Any] = {}
    for field in dataclasses.fields(config):
        value = getattr(config, field.name)
        if field.metadata.get("inline"):
            document.update(encode(value))
            continue
        if field.metadata.get("omitempty") and _is_empty(value):
            continue
        document[field.metadata.get("name", field.name)] = _encode_value(value)
    return document
