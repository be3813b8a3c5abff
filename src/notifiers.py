# Copyright 2023 Canonical Ltd.
# See LICENSE file for licensing details.

"""Notifier configurations for alertmanager receivers.

Each receiver type has a frozen dataclass describing its settings and a read-only default
instance. Decoding always starts from a copy of the default, so a field absent from the
document keeps its type-specific default value.
"""

import abc
import logging
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from notifier_decoder import (
    DuplicateHeaderError,
    MissingFieldError,
    StringMap,
    decode,
    encode,
    inline,
    omitempty,
    renamed,
    string_map,
)
from notifier_types import Duration, Secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotifierConfig:
    """Options common to all notifier configurations."""

    send_resolved: bool = False


class ReceiverConfig(abc.ABC):
    """Represents the interface shared by every notifier configuration."""

    notifier_config: NotifierConfig

    # Pairs of (attribute, error message) checked after decoding.
    _required_fields: Tuple[Tuple[str, str], ...] = ()

    @property
    @abc.abstractmethod
    def name(self):
        """Represents the receiver type, e.g. "email".

        The same name prefixes the "<name>_configs" section of a receiver.
        """

    def send_resolved(self) -> bool:
        """Whether notifications about resolved alerts should be sent."""
        return self.notifier_config.send_resolved

    @classmethod
    def default(cls):
        """Return the read-only default instance decoding starts from."""
        return _DEFAULTS[cls.name]

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]):
        """Decode and validate a raw document. See :func:`notifier_decoder.decode`."""
        return decode(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        """Encode into a plain document, secrets redacted."""
        return encode(self)

    def normalized(self):
        """Return a normalized copy of this config; hook for per-type normalization."""
        return self

    def __eq__(self, other) -> bool:
        if other.__class__ is not self.__class__:
            return NotImplemented
        return all(getattr(self, f.name) == getattr(other, f.name) for f in fields(self))

    # Map fields are mapping proxies, so no config type is hashable.
    __hash__ = None  # type: ignore[assignment]

    def check_required(self) -> None:
        """Raise MissingFieldError if a mandatory field is empty."""
        for attr, message in self._required_fields:
            if not getattr(self, attr):
                raise MissingFieldError(self.name, attr, message)


def canonical_header_name(header: str) -> str:
    """Capitalize each dash-separated word of a header name, e.g. "content-TYPE"."""
    return "-".join(word[:1].upper() + word[1:].lower() for word in header.split("-"))


@dataclass(frozen=True, eq=False)
class EmailConfig(ReceiverConfig):
    """Configures notifications via mail."""

    name = "email"
    _required_fields = (("to", "missing to address in email config"),)

    notifier_config: NotifierConfig = inline(NotifierConfig())

    # Email address to notify.
    to: str = ""
    from_: str = renamed("from")
    smarthost: str = omitempty()
    auth_username: str = ""
    auth_password: Secret = Secret()
    auth_secret: Secret = Secret()
    auth_identity: str = ""
    headers: StringMap = string_map()
    html: str = ""
    require_tls: Optional[bool] = omitempty(None)

    def normalized(self) -> "EmailConfig":
        """Canonicalize header names; names are compared case-insensitively."""
        headers: Dict[str, str] = {}
        seen = set()
        for header, value in self.headers.items():
            canonical = canonical_header_name(header)
            if canonical.casefold() in seen:
                raise DuplicateHeaderError(self.name, canonical)
            seen.add(canonical.casefold())
            headers[canonical] = value
        return replace(self, headers=MappingProxyType(headers))


@dataclass(frozen=True, eq=False)
class PagerdutyConfig(ReceiverConfig):
    """Configures notifications via PagerDuty."""

    name = "pagerduty"
    _required_fields = (
        ("service_key", "missing service key in PagerDuty config"),  # The integration key
    )

    notifier_config: NotifierConfig = inline(NotifierConfig())

    service_key: Secret = Secret()
    url: str = ""
    client: str = ""
    client_url: str = ""
    description: str = ""
    details: StringMap = string_map()


@dataclass(frozen=True, eq=False)
class SlackConfig(ReceiverConfig):
    """Configures notifications via Slack."""

    name = "slack"

    notifier_config: NotifierConfig = inline(NotifierConfig())

    api_url: Secret = Secret()

    # Channel override, like #other-channel or @username.
    channel: str = ""
    username: str = ""
    color: str = ""

    title: str = ""
    title_link: str = ""
    pretext: str = ""
    text: str = ""
    fallback: str = ""
    icon_emoji: str = ""
    icon_url: str = ""


@dataclass(frozen=True, eq=False)
class HipchatConfig(ReceiverConfig):
    """Configures notifications via Hipchat."""

    name = "hipchat"
    _required_fields = (("room_id", "missing room id in Hipchat config"),)

    notifier_config: NotifierConfig = inline(NotifierConfig())

    api_url: str = ""
    auth_token: Secret = Secret()
    room_id: str = ""
    from_: str = renamed("from")
    notify: bool = False
    message: str = ""
    message_format: str = ""
    color: str = ""


@dataclass(frozen=True, eq=False)
class WebhookConfig(ReceiverConfig):
    """Configures notifications via a generic webhook."""

    name = "webhook"
    _required_fields = (("url", "missing URL in webhook config"),)

    notifier_config: NotifierConfig = inline(NotifierConfig())

    # The endpoint to send HTTP POST requests to.
    url: str = ""


@dataclass(frozen=True, eq=False)
class OpsGenieConfig(ReceiverConfig):
    """Configures notifications via OpsGenie."""

    name = "opsgenie"
    _required_fields = (("api_key", "missing API key in OpsGenie config"),)

    notifier_config: NotifierConfig = inline(NotifierConfig())

    api_key: Secret = Secret()
    api_host: str = ""
    message: str = ""
    description: str = ""
    source: str = ""
    details: StringMap = string_map()
    teams: str = ""
    tags: str = ""
    note: str = ""


@dataclass(frozen=True, eq=False)
class VictorOpsConfig(ReceiverConfig):
    """Configures notifications via VictorOps."""

    name = "victorops"
    _required_fields = (
        ("api_key", "missing API key in VictorOps config"),
        ("routing_key", "missing routing key in VictorOps config"),
    )

    notifier_config: NotifierConfig = inline(NotifierConfig())

    api_key: Secret = Secret()
    api_url: str = ""
    routing_key: str = ""
    message_type: str = ""
    state_message: str = renamed("message")
    from_: str = renamed("from")


@dataclass(frozen=True, eq=False)
class PushoverConfig(ReceiverConfig):
    """Configures notifications via Pushover."""

    name = "pushover"
    _required_fields = (
        ("user_key", "missing user key in Pushover config"),  # The recipient user's user key
        ("token", "missing token in Pushover config"),  # The registered application's API token
    )

    notifier_config: NotifierConfig = inline(NotifierConfig())

    user_key: Secret = Secret()
    token: Secret = Secret()
    title: str = ""
    message: str = ""
    url: str = ""
    priority: str = ""
    retry: Duration = Duration()
    expire: Duration = Duration()


DEFAULT_EMAIL_CONFIG = EmailConfig(
    notifier_config=NotifierConfig(send_resolved=False),
    html='{{ template "email.default.html" . }}',
)

DEFAULT_PAGERDUTY_CONFIG = PagerdutyConfig(
    notifier_config=NotifierConfig(send_resolved=True),
    description='{{ template "pagerduty.default.description" .}}',
    client='{{ template "pagerduty.default.client" . }}',
    client_url='{{ template "pagerduty.default.clientURL" . }}',
    details=MappingProxyType(
        {
            "firing": '{{ template "pagerduty.default.instances" .Alerts.Firing }}',
            "resolved": '{{ template "pagerduty.default.instances" .Alerts.Resolved }}',
            "num_firing": "{{ .Alerts.Firing | len }}",
            "num_resolved": "{{ .Alerts.Resolved | len }}",
        }
    ),
)

DEFAULT_SLACK_CONFIG = SlackConfig(
    notifier_config=NotifierConfig(send_resolved=False),
    color='{{ template "slack.default.color" }}',
    username='{{ template "slack.default.username" . }}',
    title='{{ template "slack.default.title" . }}',
    title_link='{{ template "slack.default.titlelink" . }}',
    icon_emoji='{{ template "slack.default.iconemoji" . }}',
    icon_url='{{ template "slack.default.iconurl" . }}',
    pretext='{{ template "slack.default.pretext" . }}',
    text='{{ template "slack.default.text" . }}',
    fallback='{{ template "slack.default.fallback" . }}',
)

DEFAULT_HIPCHAT_CONFIG = HipchatConfig(
    notifier_config=NotifierConfig(send_resolved=False),
    color='{{ if eq .Status "firing" }}red{{ else }}green{{ end }}',
    from_='{{ template "hipchat.default.from" . }}',
    notify=False,
    message='{{ template "hipchat.default.message" . }}',
    message_format="text",
)

DEFAULT_WEBHOOK_CONFIG = WebhookConfig(
    notifier_config=NotifierConfig(send_resolved=True),
)

DEFAULT_OPSGENIE_CONFIG = OpsGenieConfig(
    notifier_config=NotifierConfig(send_resolved=True),
    message='{{ template "opsgenie.default.message" . }}',
    description='{{ template "opsgenie.default.description" . }}',
    source='{{ template "opsgenie.default.source" . }}',
)

DEFAULT_VICTOROPS_CONFIG = VictorOpsConfig(
    notifier_config=NotifierConfig(send_resolved=True),
    message_type="CRITICAL",
    state_message='{{ template "victorops.default.message" . }}',
    from_='{{ template "victorops.default.from" . }}',
)

DEFAULT_PUSHOVER_CONFIG = PushoverConfig(
    notifier_config=NotifierConfig(send_resolved=True),
    title='{{ template "pushover.default.title" . }}',
    message='{{ template "pushover.default.message" . }}',
    url='{{ template "pushover.default.url" . }}',
    # emergency (firing) or normal
    priority='{{ if eq .Status "firing" }}2{{ else }}0{{ end }}',
    retry=Duration.from_timedelta(timedelta(minutes=1)),
    expire=Duration.from_timedelta(timedelta(hours=1)),
)

NOTIFIER_TYPES: Mapping[str, Type[ReceiverConfig]] = MappingProxyType(
    {
        cls.name: cls
        for cls in (
            EmailConfig,
            PagerdutyConfig,
            SlackConfig,
            HipchatConfig,
            WebhookConfig,
            OpsGenieConfig,
            VictorOpsConfig,
            PushoverConfig,
        )
    }
)

_DEFAULTS: Mapping[str, ReceiverConfig] = MappingProxyType(
    {
        config.name: config
        for config in (
            DEFAULT_EMAIL_CONFIG,
            DEFAULT_PAGERDUTY_CONFIG,
            DEFAULT_SLACK_CONFIG,
            DEFAULT_HIPCHAT_CONFIG,
            DEFAULT_WEBHOOK_CONFIG,
            DEFAULT_OPSGENIE_CONFIG,
            DEFAULT_VICTOROPS_CONFIG,
            DEFAULT_PUSHOVER_CONFIG,
        )
    }
)


def default_config(name: str) -> ReceiverConfig:
    """Return the default config of the receiver type `name`, e.g. "slack".

    Raises:
        KeyError: if there is no such receiver type.
    """
    try:
        return _DEFAULTS[name]
    except KeyError:
        logger.error("unknown receiver type %r", name)
        raise
