"""Stateless editor-JSON converters, one per native format.

Build a `ConverterSet` once (see `default_converters`) and hand it to the
services that need it.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from modeler.domain.enums import ModelType

from .base import DiagramConverter, NativeDiagram, NativeElement, NativeReference
from .bpmn import BpmnConverter
from .cmmn import CmmnConverter
from .dmn import DecisionTable, DmnConverter
from .events import ChannelConverter, ChannelDefinition, EventConverter, EventDefinition, discover


@dataclass(frozen=True)
class ConverterSet:
    bpmn: BpmnConverter
    cmmn: CmmnConverter
    dmn: DmnConverter
    event: EventConverter
    channel: ChannelConverter

    def diagram(self, model_type: ModelType) -> DiagramConverter:
        if model_type is ModelType.BPMN:
            return self.bpmn
        if model_type is ModelType.CMMN:
            return self.cmmn
        if model_type in (ModelType.APP, ModelType.FORM, ModelType.DECISION_TABLE):
            raise ValueError(f"{model_type.value} models are not diagrams")
        raise ValueError(f"Unsupported model type: {model_type}")


@lru_cache(maxsize=1)
def default_converters() -> ConverterSet:
    return ConverterSet(
        bpmn=BpmnConverter(),
        cmmn=CmmnConverter(),
        dmn=DmnConverter(),
        event=EventConverter(),
        channel=ChannelConverter(),
    )


__all__ = [
    "ConverterSet",
    "default_converters",
    "DiagramConverter",
    "NativeDiagram",
    "NativeElement",
    "NativeReference",
    "BpmnConverter",
    "CmmnConverter",
    "DmnConverter",
    "DecisionTable",
    "EventConverter",
    "EventDefinition",
    "ChannelConverter",
    "ChannelDefinition",
    "discover",
]
