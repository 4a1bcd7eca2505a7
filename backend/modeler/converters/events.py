"""Event-registry definitions discovered inside Bpmn and Cmmn diagrams.

Any shape whose properties carry ``eventkey`` contributes an event definition;
``channelkey`` contributes a channel definition. Both are rendered as JSON
documents for the deployable archive.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from modeler.domain.errors import ConversionError

from .base import NativeDiagram, NativeElement, text_property

OUTBOUND_STENCILS = ("SendEventTask",)


@dataclass(frozen=True)
class EventParameter:
    name: str
    type: str


@dataclass(frozen=True)
class EventDefinition:
    key: str
    name: str
    payload: Tuple[EventParameter, ...] = ()
    correlation_parameters: Tuple[EventParameter, ...] = ()


@dataclass(frozen=True)
class ChannelDefinition:
    key: str
    name: str
    channel_type: str
    type: str
    destination: Optional[str] = None
    event_key: Optional[str] = None


def _parameter_list(value: Any, wrapper: str) -> List[Dict[str, Any]]:
    if isinstance(value, dict):
        value = value.get(wrapper)
    if value is None or value == "":
        return []
    if not isinstance(value, list):
        raise ConversionError(f"Event parameters under {wrapper} must be a list")
    return [p for p in value if isinstance(p, dict)]


def _parameters(items: Iterable[Dict[str, Any]]) -> Tuple[EventParameter, ...]:
    seen: Dict[str, EventParameter] = {}
    for item in items:
        name = item.get("eventName")
        if not name:
            continue
        seen.setdefault(str(name), EventParameter(str(name), str(item.get("eventType") or "string")))
    return tuple(seen.values())


class EventConverter:
    def json_to_native(self, element: NativeElement) -> Optional[EventDefinition]:
        props = element.properties
        key = text_property(props, "eventkey")
        if not key:
            return None
        payload = _parameters(
            _parameter_list(props.get("eventinparameters"), "inParameters")
            + _parameter_list(props.get("eventoutparameters"), "outParameters")
        )
        correlation = _parameters(_parameter_list(props.get("eventcorrelationparameters"), "correlationParameters"))
        return EventDefinition(
            key=key,
            name=text_property(props, "eventname") or key,
            payload=payload,
            correlation_parameters=correlation,
        )

    def native_to_json(self, event: EventDefinition) -> Dict[str, Any]:
        return {
            "key": event.key,
            "name": event.name,
            "payload": [{"name": p.name, "type": p.type} for p in event.payload],
            "correlationParameters": [{"name": p.name, "type": p.type} for p in event.correlation_parameters],
        }

    def native_to_bytes(self, event: EventDefinition) -> bytes:
        return json.dumps(self.native_to_json(event), indent=2).encode("utf-8")


class ChannelConverter:
    def json_to_native(self, element: NativeElement) -> Optional[ChannelDefinition]:
        props = element.properties
        key = text_property(props, "channelkey")
        if not key:
            return None
        return ChannelDefinition(
            key=key,
            name=text_property(props, "channelname") or key,
            channel_type="outbound" if element.stencil in OUTBOUND_STENCILS else "inbound",
            type=text_property(props, "channeltype") or "jms",
            destination=text_property(props, "channeldestination"),
            event_key=text_property(props, "eventkey"),
        )

    def native_to_json(self, channel: ChannelDefinition) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "key": channel.key,
            "category": "channel",
            "name": channel.name,
            "channelType": channel.channel_type,
            "type": channel.type,
        }
        if channel.destination:
            doc["destination"] = channel.destination
        if channel.channel_type == "inbound":
            doc["deserializerType"] = "json"
            if channel.event_key:
                doc["channelEventKeyDetection"] = {"fixedValue": channel.event_key}
        else:
            doc["serializerType"] = "json"
        return doc

    def native_to_bytes(self, channel: ChannelDefinition) -> bytes:
        return json.dumps(self.native_to_json(channel), indent=2).encode("utf-8")


def discover(
    diagrams: Iterable[NativeDiagram],
    events: EventConverter,
    channels: ChannelConverter,
) -> Tuple[Dict[str, EventDefinition], Dict[str, ChannelDefinition]]:
    """Event and channel definitions referenced anywhere in `diagrams`, first one per key wins."""
    found_events: Dict[str, EventDefinition] = {}
    found_channels: Dict[str, ChannelDefinition] = {}
    for diagram in diagrams:
        for element in diagram.walk():
            event = events.json_to_native(element)
            if event is not None:
                found_events.setdefault(event.key, event)
            channel = channels.json_to_native(element)
            if channel is not None:
                found_channels.setdefault(channel.key, channel)
    return found_events, found_channels
