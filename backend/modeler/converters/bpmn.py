from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Dict, Optional

from modeler.domain.enums import ModelType
from modeler.domain.errors import ConversionError
from modeler.domain.references import DECISION_TABLE_REFERENCE, FORM_REFERENCE

from .base import (
    NS_XSI,
    DiagramConverter,
    ExtensionElements,
    NativeDiagram,
    NativeElement,
    connections,
    qname,
    text_property,
    to_xml_bytes,
    xml_id,
)

NS_BPMN = "http://www.omg.org/spec/BPMN/20100524/MODEL"
NS_FLOWABLE_BPMN = "http://flowable.org/bpmn"
TARGET_NAMESPACE = "http://www.flowable.org/processdef"

ET.register_namespace("bpmn", NS_BPMN)
ET.register_namespace("flowable", NS_FLOWABLE_BPMN)

STENCIL_TAGS: Dict[str, str] = {
    "StartNoneEvent": "startEvent",
    "StartEventRegistryEvent": "startEvent",
    "StartMessageEvent": "startEvent",
    "StartTimerEvent": "startEvent",
    "EndNoneEvent": "endEvent",
    "EndErrorEvent": "endEvent",
    "UserTask": "userTask",
    "ServiceTask": "serviceTask",
    "ScriptTask": "scriptTask",
    "ManualTask": "manualTask",
    "ReceiveTask": "receiveTask",
    "SendEventTask": "serviceTask",
    "DecisionTask": "serviceTask",
    "CallActivity": "callActivity",
    "SubProcess": "subProcess",
    "Exclusive_Databased_Gateway": "exclusiveGateway",
    "ParallelGateway": "parallelGateway",
    "InclusiveGateway": "inclusiveGateway",
    "EventGateway": "eventBasedGateway",
    "SequenceFlow": "sequenceFlow",
}
# Containers whose children belong directly to the process
FLATTENED_STENCILS = ("Pool", "Lane")
# Purely graphical
SKIPPED_STENCILS = ("TextAnnotation", "Association", "DataStore")


def _f(tag: str) -> str:
    return qname(NS_FLOWABLE_BPMN, tag)


def _b(tag: str) -> str:
    return qname(NS_BPMN, tag)


class BpmnConverter(DiagramConverter):
    """Process editor JSON, one executable process per model."""

    model_type = ModelType.BPMN

    def process_id(self, native: NativeDiagram) -> str:
        process_id = text_property(native.properties, "process_id")
        if not process_id:
            raise ConversionError("Bpmn model has no process id")
        return xml_id(process_id)

    def native_to_xml(self, native: NativeDiagram) -> bytes:
        root = ET.Element(_b("definitions"), {"targetNamespace": TARGET_NAMESPACE})
        process = ET.SubElement(
            root,
            _b("process"),
            {"id": self.process_id(native), "isExecutable": "true"},
        )
        name = text_property(native.properties, "name")
        if name:
            process.set("name", name)
        documentation = text_property(native.properties, "documentation")
        if documentation:
            ET.SubElement(process, _b("documentation")).text = documentation

        sources = connections(native)
        self._emit(process, native.elements, sources)
        return to_xml_bytes(root)

    def _emit(self, parent: ET.Element, elements, sources: Dict[str, str]) -> None:
        for element in elements:
            if element.stencil in FLATTENED_STENCILS:
                self._emit(parent, element.children, sources)
                continue
            if element.stencil in SKIPPED_STENCILS:
                continue
            if element.stencil == "SequenceFlow":
                self._emit_flow(parent, element, sources)
                continue
            node = self._emit_node(parent, element)
            if element.stencil == "SubProcess":
                self._emit(node, element.children, sources)

    def _emit_node(self, parent: ET.Element, element: NativeElement) -> ET.Element:
        tag = STENCIL_TAGS.get(element.stencil, "task")
        props = element.properties
        node = ET.SubElement(parent, _b(tag), {"id": xml_id(element.resource_id)})
        name = text_property(props, "name")
        if name:
            node.set("name", name)
        documentation = text_property(props, "documentation")
        if documentation:
            ET.SubElement(node, _b("documentation")).text = documentation

        extensions = ExtensionElements(node, NS_BPMN, NS_FLOWABLE_BPMN)
        if element.stencil == "UserTask":
            form = element.reference(FORM_REFERENCE.property_name)
            form_key = form.key if form and form.key else text_property(props, "formkeydefinition")
            if form_key:
                node.set(_f("formKey"), form_key)
            assignee = text_property(props, "assignee")
            if assignee:
                node.set(_f("assignee"), assignee)
        elif element.stencil == "StartNoneEvent":
            form = element.reference(FORM_REFERENCE.property_name)
            if form and form.key:
                node.set(_f("formKey"), form.key)
        elif element.stencil == "DecisionTask":
            node.set(_f("type"), "dmn")
            decision = element.reference(DECISION_TABLE_REFERENCE.property_name)
            decision_key = decision.key if decision and decision.key else text_property(
                props, "decisiontaskdecisiontablereferencekey"
            )
            if decision_key:
                extensions.field("decisionTableReferenceKey", decision_key)
        elif element.stencil == "ServiceTask":
            service_class = text_property(props, "servicetaskclass")
            expression = text_property(props, "servicetaskexpression")
            if service_class:
                node.set(_f("class"), service_class)
            elif expression:
                node.set(_f("expression"), expression)
        elif element.stencil == "SendEventTask":
            node.set(_f("type"), "send-event")
        elif element.stencil == "ScriptTask":
            node.set("scriptFormat", text_property(props, "scriptformat") or "javascript")
            ET.SubElement(node, _b("script")).text = text_property(props, "scripttext") or ""
        elif element.stencil == "CallActivity":
            called = text_property(props, "callactivitycalledelement")
            if called:
                node.set("calledElement", called)

        event_key = text_property(props, "eventkey")
        if event_key:
            extensions.text("eventType", event_key)
            event_name = text_property(props, "eventname")
            if event_name:
                extensions.text("eventName", event_name)
        channel_key = text_property(props, "channelkey")
        if channel_key:
            extensions.text("channelKey", channel_key)
        return node

    def _emit_flow(self, parent: ET.Element, element: NativeElement, sources: Dict[str, str]) -> None:
        source = sources.get(element.resource_id)
        target: Optional[str] = element.outgoing[0] if element.outgoing else None
        if target is None:
            target = (element.layout.get("target") or {}).get("resourceId")
        if not source or not target:
            raise ConversionError(f"Sequence flow {element.resource_id} is not connected")
        flow = ET.SubElement(
            parent,
            _b("sequenceFlow"),
            {"id": xml_id(element.resource_id), "sourceRef": xml_id(source), "targetRef": xml_id(target)},
        )
        name = text_property(element.properties, "name")
        if name:
            flow.set("name", name)
        condition = text_property(element.properties, "conditionsequenceflow")
        if condition:
            expr = ET.SubElement(flow, _b("conditionExpression"))
            expr.set(qname(NS_XSI, "type"), "tFormalExpression")
            expr.text = condition

