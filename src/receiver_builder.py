# Copyright 2023 Canonical Ltd.
# See LICENSE file for licensing details.

"""Receiver decoding and rendering for alertmanager."""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from notifier_decoder import (
    ConfigError,
    MalformedValueError,
    MissingFieldError,
    UnknownFieldError,
)
from notifiers import NOTIFIER_TYPES, ReceiverConfig

logger = logging.getLogger(__name__)


def section_name(receiver_type: str) -> str:
    """Return the receiver section holding configs of the given type, e.g. "email_configs"."""
    return f"{receiver_type}_configs"


@dataclass(frozen=True)
class Receiver:
    """A named receiver and the notifier configs it dispatches to."""

    name: str
    configs: Mapping[str, Tuple[ReceiverConfig, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def configs_of(self, receiver_type: str) -> Tuple[ReceiverConfig, ...]:
        """Return the configs of the given type, e.g. "slack"."""
        return self.configs.get(receiver_type, ())

    def to_dict(self) -> Dict[str, Any]:
        """Encode into a plain document, secrets redacted."""
        document: Dict[str, Any] = {"name": self.name}
        for receiver_type in NOTIFIER_TYPES:
            if configs := self.configs_of(receiver_type):
                document[section_name(receiver_type)] = [c.to_dict() for c in configs]
        return document


def decode_receiver(data: Optional[Mapping[str, Any]]) -> Receiver:
    """Decode a raw receiver node: a name plus one list per notifier type.

    Errors raised while decoding a notifier config get the receiver name and the config's
    position prepended to their message.

    Raises:
        ConfigError: if the receiver or any of its notifier configs is invalid.
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        err = MalformedValueError(
            "receiver", "<root>", f"expected a mapping, got {type(data).__name__}"
        )
        logger.error("%s", err)
        raise err

    name = data.get("name")
    if not name or not isinstance(name, str):
        logger.error("receiver without a name")
        raise MissingFieldError("receiver", "name", "missing name in receiver")

    sections = {section_name(t): cls for t, cls in NOTIFIER_TYPES.items()}
    leftover = sorted(str(key) for key in data if key != "name" and key not in sections)
    if leftover:
        err = UnknownFieldError("receiver", leftover)
        err.add_context(f'receiver "{name}"')
        logger.error("%s", err)
        raise err

    configs = {}
    for section, cls in sections.items():
        raw_configs = data.get(section)
        if raw_configs is None:
            continue
        if not isinstance(raw_configs, list):
            err = MalformedValueError(
                "receiver", section, f"expected a list, got {type(raw_configs).__name__}"
            )
            err.add_context(f'receiver "{name}"')
            logger.error("%s", err)
            raise err
        decoded = []
        for index, raw in enumerate(raw_configs):
            try:
                decoded.append(cls.from_dict(raw))
            except ConfigError as e:
                e.add_context(f'receiver "{name}": {section}[{index}]')
                raise
        configs[cls.name] = tuple(decoded)

    return Receiver(name=name, configs=MappingProxyType(configs))


class ReceiversBuilder:
    """A 'config builder' for the receivers section of alertmanager.yml."""

    def __init__(self):
        self._receivers: List[Receiver] = []

    def add_receiver(self, receiver: Receiver):
        """Add a receiver; receiver names must be unique."""
        if any(r.name == receiver.name for r in self._receivers):
            logger.error("duplicate receiver name %r", receiver.name)
            raise ConfigError(f'notification config name "{receiver.name}" is not unique')
        self._receivers.append(receiver)
        return self

    def add_document(self, data: Optional[Mapping[str, Any]]):
        """Decode a raw receiver node and add it."""
        return self.add_receiver(decode_receiver(data))

    @property
    def receivers(self) -> List[Receiver]:
        """Return a copy of the receivers added so far."""
        return list(self._receivers)

    def build(self) -> str:
        """Return the receivers section rendered as YAML, secrets redacted."""
        return yaml.safe_dump(
            {"receivers": [r.to_dict() for r in self._receivers]}, sort_keys=False
        )


def load_receivers(text: str) -> List[Receiver]:
    """Decode the `receivers` list of an alertmanager.yml document.

    Other top-level sections are ignored.

    Raises:
        ConfigError: if the document is not a mapping or any receiver is invalid.
    """
    try:
        document = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse receivers document: %s", e)
        raise ConfigError(f"Failed to parse receivers document: {e}") from e
    if not isinstance(document, Mapping):
        logger.error("Invalid config file: expected a mapping at the top level")
        raise ConfigError("Invalid config file: expected a mapping at the top level")

    raw_receivers = document.get("receivers")
    if raw_receivers is None:
        raw_receivers = []
    if not isinstance(raw_receivers, list):
        err = MalformedValueError(
            "receivers", "receivers", f"expected a list, got {type(raw_receivers).__name__}"
        )
        logger.error("%s", err)
        raise err

    builder = ReceiversBuilder()
    for raw in raw_receivers:
        builder.add_document(raw)
    return builder.receivers
