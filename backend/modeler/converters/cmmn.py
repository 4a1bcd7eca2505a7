from __future__ import annotations

import xml.etree.ElementTree as ET
from itertools import count
from typing import Dict, Iterator, List

from modeler.domain.enums import ModelType
from modeler.domain.errors import ConversionError
from modeler.domain.references import (
    CASE_REFERENCE,
    DECISION_TABLE_REFERENCE,
    FORM_REFERENCE,
    PROCESS_REFERENCE,
)

from .base import (
    DiagramConverter,
    ExtensionElements,
    NativeDiagram,
    NativeElement,
    qname,
    text_property,
    to_xml_bytes,
    xml_id,
)

NS_CMMN = "http://www.omg.org/spec/CMMN/20151109/MODEL"
NS_FLOWABLE_CMMN = "http://flowable.org/cmmn"
TARGET_NAMESPACE = "http://www.flowable.org/casedef"

ET.register_namespace("cmmn", NS_CMMN)
ET.register_namespace("flowablecmmn", NS_FLOWABLE_CMMN)

STENCIL_TAGS: Dict[str, str] = {
    "HumanTask": "humanTask",
    "CaseTask": "caseTask",
    "ProcessTask": "processTask",
    "DecisionTask": "decisionTask",
    "Task": "task",
    "ServiceTask": "task",
    "SendEventTask": "task",
    "Stage": "stage",
    "ExpandedStage": "stage",
    "Milestone": "milestone",
    "EventListener": "eventListener",
    "TimerEventListener": "timerEventListener",
    "UserEventListener": "userEventListener",
}
SKIPPED_STENCILS = ("Association", "EntryCriterion", "ExitCriterion", "TextAnnotation")
STAGE_STENCILS = ("Stage", "ExpandedStage")


def _c(tag: str) -> str:
    return qname(NS_CMMN, tag)


def _f(tag: str) -> str:
    return qname(NS_FLOWABLE_CMMN, tag)


class CmmnConverter(DiagramConverter):
    """Case editor JSON rooted at a single ``CasePlanModel`` shape."""

    model_type = ModelType.CMMN

    def case_id(self, native: NativeDiagram) -> str:
        case_id = text_property(native.properties, "case_id")
        if not case_id:
            raise ConversionError("Cmmn model has no case id")
        return xml_id(case_id)

    def plan_model(self, native: NativeDiagram) -> NativeElement:
        for element in native.elements:
            if element.stencil == "CasePlanModel":
                return element
        raise ConversionError("Cmmn model has no case plan model")

    def native_to_xml(self, native: NativeDiagram) -> bytes:
        root = ET.Element(_c("definitions"), {"targetNamespace": TARGET_NAMESPACE})
        case = ET.SubElement(root, _c("case"), {"id": self.case_id(native)})
        name = text_property(native.properties, "name")
        if name:
            case.set("name", name)
        documentation = text_property(native.properties, "documentation")
        if documentation:
            ET.SubElement(case, _c("documentation")).text = documentation

        plan = self.plan_model(native)
        plan_node = ET.SubElement(case, _c("casePlanModel"), {"id": xml_id(plan.resource_id)})
        plan_name = text_property(plan.properties, "name") or name
        if plan_name:
            plan_node.set("name", plan_name)
        self._emit_stage(plan_node, plan, count(1))
        return to_xml_bytes(root)

    def _emit_stage(self, stage_node: ET.Element, stage: NativeElement, ids: Iterator[int]) -> None:
        definitions: List[NativeElement] = []
        for child in stage.children:
            if child.stencil in SKIPPED_STENCILS:
                continue
            ET.SubElement(
                stage_node,
                _c("planItem"),
                {"id": f"planItem{next(ids)}", "definitionRef": xml_id(child.resource_id)},
            )
            definitions.append(child)

        for child in definitions:
            node = self._emit_definition(stage_node, child)
            if child.stencil in STAGE_STENCILS:
                self._emit_stage(node, child, ids)

    def _emit_definition(self, parent: ET.Element, element: NativeElement) -> ET.Element:
        props = element.properties
        node = ET.SubElement(parent, _c(STENCIL_TAGS.get(element.stencil, "task")), {"id": xml_id(element.resource_id)})
        name = text_property(props, "name")
        if name:
            node.set("name", name)
        documentation = text_property(props, "documentation")
        if documentation:
            ET.SubElement(node, _c("documentation")).text = documentation

        extensions = ExtensionElements(node, NS_CMMN, NS_FLOWABLE_CMMN)
        if element.stencil == "HumanTask":
            form = element.reference(FORM_REFERENCE.property_name)
            if form and form.key:
                node.set(_f("formKey"), form.key)
            assignee = text_property(props, "assignee")
            if assignee:
                node.set(_f("assignee"), assignee)
        elif element.stencil == "CaseTask":
            case = element.reference(CASE_REFERENCE.property_name)
            if case and case.key:
                node.set("caseRef", case.key)
        elif element.stencil == "ProcessTask":
            process = element.reference(PROCESS_REFERENCE.property_name)
            if process and process.key:
                node.set("processRef", process.key)
        elif element.stencil == "DecisionTask":
            decision = element.reference(DECISION_TABLE_REFERENCE.property_name)
            if decision and decision.key:
                node.set("decisionRef", decision.key)
        elif element.stencil == "ServiceTask":
            service_class = text_property(props, "servicetaskclass")
            if service_class:
                node.set(_f("type"), "java")
                node.set(_f("class"), service_class)
        elif element.stencil == "SendEventTask":
            node.set(_f("type"), "send-event")

        event_key = text_property(props, "eventkey")
        if event_key:
            extensions.text("eventType", event_key)
        channel_key = text_property(props, "channelkey")
        if channel_key:
            extensions.text("channelKey", channel_key)
        return node
