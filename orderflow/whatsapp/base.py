from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from orderflow.models.whatsapp_config import WhatsAppConfig

TEXT = "text"
BUTTONS = "buttons"
LIST = "list"
LOCATION_REQUEST = "location_request"

INBOUND_KINDS = {"text", "location", "image", "voice", "interactive"}


@dataclass(frozen=True)
class Button:
    id: str
    title: str


@dataclass(frozen=True)
class ListRow:
    id: str
    title: str
    description: str | None = None


@dataclass(frozen=True)
class ListSection:
    title: str
    rows: tuple[ListRow, ...]


@dataclass
class OutboundMessage:
    """Transport-independent reply produced by the conversation flow."""

    kind: str
    text: str
    buttons: list[Button] = field(default_factory=list)
    sections: list[ListSection] = field(default_factory=list)
    button_label: str | None = None

    @classmethod
    def plain(cls, text: str) -> "OutboundMessage":
        return cls(kind=TEXT, text=text)

    @classmethod
    def with_buttons(cls, text: str, buttons: list[Button]) -> "OutboundMessage":
        if not 2 <= len(buttons) <= 3:
            raise ValueError("interactive button messages carry 2 or 3 buttons")
        return cls(kind=BUTTONS, text=text, buttons=list(buttons))

    @classmethod
    def location_request(cls, text: str) -> "OutboundMessage":
        return cls(kind=LOCATION_REQUEST, text=text)

    @classmethod
    def with_list(cls, text: str, button_label: str, sections: list[ListSection]) -> "OutboundMessage":
        return cls(kind=LIST, text=text, sections=list(sections), button_label=button_label)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "text": self.text}
        if self.buttons:
            data["buttons"] = [asdict(button) for button in self.buttons]
        if self.sections:
            data["button_label"] = self.button_label
            data["sections"] = [
                {"title": section.title, "rows": [asdict(row) for row in section.rows]}
                for section in self.sections
            ]
        return data


@dataclass
class InboundMessage:
    """Normalized inbound message; only these fields reach the conversation flow."""

    message_id: str
    sender: str
    kind: str = "text"
    text: str = ""
    latitude: float | None = None
    longitude: float | None = None
    selection_id: str | None = None
    selection_title: str | None = None
    contact_name: str | None = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_payload(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value not in (None, "")}


@dataclass
class WhatsAppSendResult:
    status: str
    provider_message_id: str | None = None
    error: str | None = None
    response_payload: dict[str, Any] | None = None


class WhatsAppProvider(Protocol):
    name: str

    def send(
        self,
        *,
        tenant_id: int,
        config: WhatsAppConfig | None,
        to_phone: str,
        message: OutboundMessage,
    ) -> WhatsAppSendResult:
        ...


SENSITIVE_KEYS = {"access_token", "verify_token", "webhook_secret", "authorization", "token"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)


def safe_json(payload: dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        return "{}"
