"""Shared pieces of the Bpmn and Cmmn editor-JSON converters.

Editor JSON is a tree of shapes (``childShapes``), each carrying a stencil id,
a resource id, a ``properties`` dict and ``outgoing`` connections. The native
form keeps that tree but lifts cross-model references out of the properties
into `NativeReference` values that carry only the target's key, so a native
diagram never holds a store id.
"""

from __future__ import annotations

import copy
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from modeler.domain.enums import ContentState, ModelType
from modeler.domain.errors import ConversionError
from modeler.domain.references import (
    EditorContent,
    KeyToInfoMaps,
    ReferenceProperty,
    reference_properties_for,
)

NS_XSI = "http://www.w3.org/2001/XMLSchema-instance"

ET.register_namespace("xsi", NS_XSI)


@dataclass(frozen=True)
class NativeReference:
    property_name: str
    target_type: ModelType
    key: Optional[str]
    name: Optional[str] = None


@dataclass
class NativeElement:
    resource_id: str
    stencil: str
    properties: Dict[str, Any] = field(default_factory=dict)
    references: List[NativeReference] = field(default_factory=list)
    outgoing: List[str] = field(default_factory=list)
    children: List["NativeElement"] = field(default_factory=list)
    layout: Dict[str, Any] = field(default_factory=dict)

    def reference(self, property_name: str) -> Optional[NativeReference]:
        for ref in self.references:
            if ref.property_name == property_name:
                return ref
        return None

    def walk(self) -> Iterator["NativeElement"]:
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class NativeDiagram:
    model_type: ModelType
    properties: Dict[str, Any] = field(default_factory=dict)
    elements: List[NativeElement] = field(default_factory=list)
    canvas: Dict[str, Any] = field(default_factory=dict)

    def walk(self) -> Iterator[NativeElement]:
        for element in self.elements:
            yield from element.walk()

    def referenced_keys(self, target_type: ModelType) -> List[str]:
        keys: List[str] = []
        for element in self.walk():
            for ref in element.references:
                if ref.target_type is target_type and ref.key and ref.key not in keys:
                    keys.append(ref.key)
        return keys


_LAYOUT_FIELDS = ("bounds", "dockers", "target")


class DiagramConverter:
    """Editor JSON <-> `NativeDiagram` <-> XML for one diagram format.

    Subclasses set `model_type` and implement `native_to_xml`.
    """

    model_type: ModelType

    @property
    def reference_properties(self) -> Tuple[ReferenceProperty, ...]:
        return reference_properties_for(self.model_type)

    def json_to_native(self, content: EditorContent) -> NativeDiagram:
        content.require(ContentState.KEY_NORMALIZED)
        doc = content.document
        if not isinstance(doc, dict):
            raise ConversionError(f"{self.model_type.value} editor JSON must be an object")
        canvas = {k: copy.deepcopy(v) for k, v in doc.items() if k not in ("properties", "childShapes")}
        return NativeDiagram(
            model_type=self.model_type,
            properties=copy.deepcopy(doc.get("properties") or {}),
            elements=[self._shape_to_native(shape) for shape in doc.get("childShapes") or []],
            canvas=canvas,
        )

    def native_to_json(self, native: NativeDiagram, key_to_info: KeyToInfoMaps) -> EditorContent:
        doc: Dict[str, Any] = copy.deepcopy(native.canvas)
        doc["properties"] = copy.deepcopy(native.properties)
        doc["childShapes"] = [self._native_to_shape(el) for el in native.elements]
        normalized = EditorContent(self.model_type, doc, ContentState.KEY_NORMALIZED)
        return normalized.resolved(key_to_info)

    def native_to_xml(self, native: NativeDiagram) -> bytes:
        raise NotImplementedError

    # Shapes
    def _shape_to_native(self, shape: Any) -> NativeElement:
        if not isinstance(shape, dict):
            raise ConversionError(f"Invalid shape in {self.model_type.value} editor JSON")
        resource_id = shape.get("resourceId")
        stencil = (shape.get("stencil") or {}).get("id")
        if not resource_id or not stencil:
            raise ConversionError(f"Shape without resourceId or stencil in {self.model_type.value} editor JSON")

        properties = copy.deepcopy(shape.get("properties") or {})
        references: List[NativeReference] = []
        for prop in self.reference_properties:
            node = properties.pop(prop.property_name, None)
            if isinstance(node, dict):
                references.append(NativeReference(prop.property_name, prop.target_type, node.get("key"), node.get("name")))

        return NativeElement(
            resource_id=str(resource_id),
            stencil=str(stencil),
            properties=properties,
            references=references,
            outgoing=[o["resourceId"] for o in shape.get("outgoing") or [] if isinstance(o, dict) and o.get("resourceId")],
            children=[self._shape_to_native(child) for child in shape.get("childShapes") or []],
            layout={k: copy.deepcopy(shape[k]) for k in _LAYOUT_FIELDS if k in shape},
        )

    def _native_to_shape(self, element: NativeElement) -> Dict[str, Any]:
        properties = copy.deepcopy(element.properties)
        for ref in element.references:
            node: Dict[str, Any] = {}
            if ref.key:
                node["key"] = ref.key
            if ref.name:
                node["name"] = ref.name
            properties[ref.property_name] = node
        shape: Dict[str, Any] = {
            "resourceId": element.resource_id,
            "stencil": {"id": element.stencil},
            "properties": properties,
            "outgoing": [{"resourceId": rid} for rid in element.outgoing],
            "childShapes": [self._native_to_shape(child) for child in element.children],
        }
        shape.update(copy.deepcopy(element.layout))
        return shape


def qname(ns: str, tag: str) -> str:
    return f"{{{ns}}}{tag}"


def text_property(properties: Mapping[str, Any], name: str) -> Optional[str]:
    value = properties.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return None
    return str(value)


def xml_id(value: str) -> str:
    """XML ids may not start with a digit."""
    if value and value[0].isdigit():
        return "a" + value
    return value


def to_xml_bytes(root: ET.Element) -> bytes:
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def connections(native: NativeDiagram) -> Dict[str, str]:
    """Map each connector's resource id to the resource id of its source."""
    sources: Dict[str, str] = {}
    for element in native.walk():
        for target in element.outgoing:
            if target:
                sources.setdefault(target, element.resource_id)
    return sources


class ExtensionElements:
    """Creates the ``extensionElements`` child lazily, on first use."""

    def __init__(self, node: ET.Element, ns: str, flowable_ns: str) -> None:
        self.node = node
        self.ns = ns
        self.flowable_ns = flowable_ns
        self._element: Optional[ET.Element] = None

    def _get(self) -> ET.Element:
        if self._element is None:
            self._element = ET.Element(qname(self.ns, "extensionElements"))
            # only documentation may precede extensionElements
            index = sum(1 for child in self.node if child.tag == qname(self.ns, "documentation"))
            self.node.insert(index, self._element)
        return self._element

    def text(self, tag: str, value: str) -> None:
        ET.SubElement(self._get(), qname(self.flowable_ns, tag)).text = value

    def field(self, name: str, value: str) -> None:
        f = ET.SubElement(self._get(), qname(self.flowable_ns, "field"), {"name": name})
        ET.SubElement(f, qname(self.flowable_ns, "string")).text = value
