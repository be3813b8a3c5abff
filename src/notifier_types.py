# Copyright 2023 Canonical Ltd.
# See LICENSE file for licensing details.

"""Value types used by notifier configurations: redacted secrets and durations."""

import re
from dataclasses import dataclass
from datetime import timedelta
from fractions import Fraction
from typing import Union

import yaml

# Emitted in place of a secret's value by every textual rendering.
REDACTED = "<secret>"


class Secret:
    """A string whose value must never be rendered.

    Equality and truthiness look at the wrapped value, so ``Secret("")`` is falsy and
    ``Secret("x") == "x"``. Anything that turns a secret into text (``str``, ``repr``,
    f-strings, ``yaml.safe_dump``) gets :data:`REDACTED` instead.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, "Secret"] = ""):
        if isinstance(value, Secret):
            value = value.get_secret_value()
        if not isinstance(value, str):
            raise TypeError(f"secret value must be a string, not {type(value).__name__}")
        object.__setattr__(self, "_value", value)

    def __setattr__(self, name, value):
        raise AttributeError("Secret is immutable")

    def get_secret_value(self) -> str:
        """Return the wrapped value; the only way to get at it."""
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other) -> bool:
        if isinstance(other, Secret):
            return self._value == other._value
        if isinstance(other, str):
            return self._value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"Secret({REDACTED!r})"

    def __reduce__(self):
        # A pickle stream carries the raw value.
        raise TypeError("Secret values cannot be pickled")

    def __copy__(self) -> "Secret":
        return self

    def __deepcopy__(self, memo) -> "Secret":
        return self


# Unit sizes in nanoseconds.
_NANOSECOND = 1
_MICROSECOND = 1000 * _NANOSECOND
_MILLISECOND = 1000 * _MICROSECOND
_SECOND = 1000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE

_PARSE_UNITS = {
    "ns": _NANOSECOND,
    "us": _MICROSECOND,
    "µs": _MICROSECOND,  # U+00B5 micro sign
    "μs": _MICROSECOND,  # U+03BC greek small letter mu
    "ms": _MILLISECOND,
    "s": _SECOND,
    "m": _MINUTE,
    "h": _HOUR,
    "d": 24 * _HOUR,
    "w": 7 * 24 * _HOUR,
}

_FORMAT_UNITS = (
    ("h", _HOUR),
    ("m", _MINUTE),
    ("s", _SECOND),
    ("ms", _MILLISECOND),
    ("us", _MICROSECOND),
    ("ns", _NANOSECOND),
)

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)([^\d.]*)")


@dataclass(frozen=True, order=True)
class Duration:
    """A signed time span with a human-readable text form such as ``1h30m``."""

    nanoseconds: int = 0

    @classmethod
    def parse(cls, text: str) -> "Duration":
        """Parse a duration such as ``90s``, ``1h30m`` or ``1.5h``.

        Raises:
            ValueError: if the text is empty, has a component without a unit, uses an unknown
                unit, or has a malformed magnitude.
        """
        if not isinstance(text, str):
            raise ValueError(f"invalid duration {text!r}")
        remaining = text
        sign = 1
        if remaining[:1] in ("-", "+"):
            sign = -1 if remaining[0] == "-" else 1
            remaining = remaining[1:]
        if remaining == "0":
            return cls(0)
        if not remaining:
            raise ValueError(f'invalid duration "{text}"')

        total = Fraction(0)
        pos = 0
        while pos < len(remaining):
            match = _COMPONENT.match(remaining, pos)
            if match is None:
                raise ValueError(f'invalid duration "{text}"')
            magnitude, unit = match.groups()
            if not unit:
                raise ValueError(f'missing unit in duration "{text}"')
            if unit not in _PARSE_UNITS:
                raise ValueError(f'unknown unit "{unit}" in duration "{text}"')
            if magnitude.endswith("."):
                magnitude += "0"
            total += Fraction(magnitude) * _PARSE_UNITS[unit]
            pos = match.end()

        return cls(sign * int(total))

    @classmethod
    def from_timedelta(cls, delta: timedelta) -> "Duration":
        """Convert from a :class:`datetime.timedelta` (microsecond resolution)."""
        micros = (delta.days * 86400 + delta.seconds) * 1000000 + delta.microseconds
        return cls(micros * _MICROSECOND)

    def to_timedelta(self) -> timedelta:
        """Convert to a :class:`datetime.timedelta`, truncating below a microsecond."""
        micros = abs(self.nanoseconds) // _MICROSECOND
        return timedelta(microseconds=-micros if self.nanoseconds < 0 else micros)

    def total_seconds(self) -> float:
        return self.nanoseconds / _SECOND

    def __str__(self) -> str:
        if self.nanoseconds == 0:
            return "0s"
        remaining = abs(self.nanoseconds)
        parts = []
        for unit, size in _FORMAT_UNITS:
            count, remaining = divmod(remaining, size)
            if count:
                parts.append(f"{count}{unit}")
        sign = "-" if self.nanoseconds < 0 else ""
        return sign + "".join(parts)


def _represent_secret(dumper: yaml.BaseDumper, secret: Secret) -> yaml.Node:
    return dumper.represent_str(REDACTED)


def _represent_duration(dumper: yaml.BaseDumper, duration: Duration) -> yaml.Node:
    return dumper.represent_str(str(duration))


# Every dumper renders the redaction token, including the libyaml ones and subclasses
# created later, which copy their representers from the representer base classes.
_DUMPERS = [
    yaml.representer.SafeRepresenter,
    yaml.representer.Representer,
    yaml.SafeDumper,
    yaml.Dumper,
]
_DUMPERS += [getattr(yaml, name) for name in ("CSafeDumper", "CDumper") if hasattr(yaml, name)]

for _dumper in _DUMPERS:
    _dumper.add_multi_representer(Secret, _represent_secret)
    _dumper.add_representer(Duration, _represent_duration)
