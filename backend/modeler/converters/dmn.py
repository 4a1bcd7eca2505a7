"""Decision-table editor JSON (v3 layout) to DMN 1.3."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from modeler.domain.errors import ConversionError

from .base import qname, to_xml_bytes, xml_id

NS_DMN = "https://www.omg.org/spec/DMN/20191111/MODEL/"
DMN_NAMESPACE = "http://www.flowable.org/dmn"

ET.register_namespace("dmn", NS_DMN)

HIT_POLICIES = ("FIRST", "ANY", "UNIQUE", "PRIORITY", "RULE ORDER", "OUTPUT ORDER", "COLLECT")
AGGREGATIONS = ("SUM", "COUNT", "MIN", "MAX")

_COLLECTION_FUNCTIONS = {
    "IS IN": "collection:allOf",
    "ALL OF": "collection:allOf",
    "IN": "collection:allOf",
    "IS NOT IN": "collection:noneOf",
    "NONE OF": "collection:noneOf",
    "NOT IN": "collection:noneOf",
    "ANY OF": "collection:anyOf",
    "ANY": "collection:anyOf",
    "NOT ALL OF": "collection:notAllOf",
    "NOT ANY": "collection:notAllOf",
}


@dataclass
class DmnClause:
    id: str
    label: Optional[str]
    variable: str
    type_ref: Optional[str]
    entries: List[str] = field(default_factory=list)


@dataclass
class DmnRule:
    inputs: List[Tuple[str, str]]
    outputs: List[str]


@dataclass
class DecisionTable:
    key: str
    name: Optional[str]
    description: Optional[str]
    hit_policy: str
    aggregation: Optional[str]
    inputs: List[DmnClause]
    outputs: List[DmnClause]
    rules: List[DmnRule]
    extra: Dict[str, Any] = field(default_factory=dict)


def _clauses(document: Dict[str, Any], field_name: str) -> List[DmnClause]:
    raw = document.get(field_name) or []
    if not isinstance(raw, list):
        raise ConversionError(f"Decision table {field_name} must be a list")
    clauses = []
    for node in raw:
        if not isinstance(node, dict) or node.get("id") in (None, ""):
            raise ConversionError(f"Decision table {field_name} entry without id")
        clauses.append(
            DmnClause(
                id=str(node["id"]),
                label=node.get("label"),
                variable=str(node.get("variableId") or ""),
                type_ref=node.get("type"),
                entries=list(node.get("entries") or []),
            )
        )
    return clauses


def is_collection_operator(operator: Optional[str]) -> bool:
    return operator in _COLLECTION_FUNCTIONS


def format_collection_value(value: str) -> str:
    if not value:
        return '""'
    if "," in value:
        return "'" + ",".join(part.strip() for part in value.split(",")) + "'"
    return value


def format_collection_expression(operator: str, variable: str, value: str) -> str:
    function = _COLLECTION_FUNCTIONS.get(operator)
    if function is None:
        return f"{operator} {format_collection_value(value)}"
    return "${" + f"{function}({format_collection_value(variable)}, {format_collection_value(value)})" + "}"


def _quoted(value: str, type_ref: Optional[str]) -> str:
    if type_ref == "string" and not value.startswith('"') and not value.startswith("${"):
        return f'"{value}"'
    return value


class DmnConverter:
    """Decision-table editor JSON <-> `DecisionTable` <-> DMN XML."""

    def json_to_native(self, document: Dict[str, Any]) -> DecisionTable:
        if not isinstance(document, dict):
            raise ConversionError("Decision table editor JSON must be an object")
        key = document.get("key")
        if not key:
            raise ConversionError("Decision table has no key")
        hit_policy = str(document.get("hitIndicator") or "FIRST").upper()
        if hit_policy not in HIT_POLICIES:
            raise ConversionError(f"Unknown hit policy {hit_policy}")
        aggregation = document.get("collectOperator")
        if aggregation is not None and str(aggregation).upper() not in AGGREGATIONS:
            raise ConversionError(f"Unknown collect operator {aggregation}")

        inputs = _clauses(document, "inputExpressions")
        outputs = _clauses(document, "outputExpressions")
        if not outputs:
            raise ConversionError(f"Decision table {key} has no output expressions")

        raw_rules = document.get("rules") or []
        if not isinstance(raw_rules, list):
            raise ConversionError("Decision table rules must be a list")
        rules = []
        for rule in raw_rules:
            if not isinstance(rule, dict):
                raise ConversionError(f"Decision table {key} has a malformed rule")
            rules.append(
                DmnRule(
                    inputs=[
                        (
                            str(rule.get(f"{clause.id}_operator") or "=="),
                            str(rule.get(f"{clause.id}_expression") or "-"),
                        )
                        for clause in inputs
                    ],
                    outputs=[str(rule.get(clause.id) if rule.get(clause.id) is not None else "") for clause in outputs],
                )
            )

        known = {"key", "name", "description", "hitIndicator", "collectOperator", "inputExpressions", "outputExpressions", "rules"}
        return DecisionTable(
            key=str(key),
            name=document.get("name"),
            description=document.get("description"),
            hit_policy=hit_policy,
            aggregation=str(aggregation).upper() if aggregation else None,
            inputs=inputs,
            outputs=outputs,
            rules=rules,
            extra={k: v for k, v in document.items() if k not in known},
        )

    def native_to_json(self, table: DecisionTable) -> Dict[str, Any]:
        doc: Dict[str, Any] = dict(table.extra)
        doc.update(
            {
                "key": table.key,
                "name": table.name,
                "description": table.description,
                "hitIndicator": table.hit_policy,
                "inputExpressions": [_clause_json(c) for c in table.inputs],
                "outputExpressions": [_clause_json(c) for c in table.outputs],
                "rules": [],
            }
        )
        if table.aggregation:
            doc["collectOperator"] = table.aggregation
        for rule in table.rules:
            row: Dict[str, Any] = {}
            for clause, (operator, expression) in zip(table.inputs, rule.inputs):
                row[f"{clause.id}_operator"] = operator
                row[f"{clause.id}_expression"] = expression
            for clause, value in zip(table.outputs, rule.outputs):
                row[clause.id] = value
            doc["rules"].append(row)
        return doc

    def native_to_xml(self, table: DecisionTable) -> bytes:
        root = ET.Element(
            qname(NS_DMN, "definitions"),
            {"id": f"definition_{xml_id(table.key)}", "name": table.name or table.key, "namespace": DMN_NAMESPACE},
        )
        decision = ET.SubElement(
            root, qname(NS_DMN, "decision"), {"id": xml_id(table.key), "name": table.name or table.key}
        )
        if table.description:
            ET.SubElement(decision, qname(NS_DMN, "description")).text = table.description
        dt_attrs = {"id": f"decisionTable_{xml_id(table.key)}", "hitPolicy": table.hit_policy}
        if table.hit_policy == "COLLECT" and table.aggregation:
            dt_attrs["aggregation"] = table.aggregation
        decision_table = ET.SubElement(decision, qname(NS_DMN, "decisionTable"), dt_attrs)

        for clause in table.inputs:
            attrs = {"id": f"input_{clause.id}"}
            if clause.label:
                attrs["label"] = clause.label
            node = ET.SubElement(decision_table, qname(NS_DMN, "input"), attrs)
            expr_attrs = {"id": f"inputExpression_{clause.id}"}
            if clause.type_ref:
                expr_attrs["typeRef"] = clause.type_ref
            expr = ET.SubElement(node, qname(NS_DMN, "inputExpression"), expr_attrs)
            ET.SubElement(expr, qname(NS_DMN, "text")).text = clause.variable

        for clause in table.outputs:
            attrs = {"id": f"output_{clause.id}", "name": clause.variable}
            if clause.label:
                attrs["label"] = clause.label
            if clause.type_ref:
                attrs["typeRef"] = clause.type_ref
            ET.SubElement(decision_table, qname(NS_DMN, "output"), attrs)

        for index, rule in enumerate(table.rules, start=1):
            rule_node = ET.SubElement(decision_table, qname(NS_DMN, "rule"), {"id": f"rule_{index}"})
            for clause, (operator, expression) in zip(table.inputs, rule.inputs):
                entry = ET.SubElement(rule_node, qname(NS_DMN, "inputEntry"), {"id": f"inputEntry_{clause.id}_{index}"})
                ET.SubElement(entry, qname(NS_DMN, "text")).text = self._input_entry(clause, operator, expression)
            for clause, value in zip(table.outputs, rule.outputs):
                entry = ET.SubElement(rule_node, qname(NS_DMN, "outputEntry"), {"id": f"outputEntry_{clause.id}_{index}"})
                ET.SubElement(entry, qname(NS_DMN, "text")).text = _quoted(value, clause.type_ref) if value else ""
        return to_xml_bytes(root)

    def _input_entry(self, clause: DmnClause, operator: str, expression: str) -> str:
        if expression == "-" or not expression:
            return "-"
        if expression.startswith("${") or expression.startswith("#{"):
            return expression
        if is_collection_operator(operator):
            return format_collection_expression(operator, clause.variable, expression)
        if operator == "==":
            return _quoted(expression, clause.type_ref)
        return f"{operator} {_quoted(expression, clause.type_ref)}"


def _clause_json(clause: DmnClause) -> Dict[str, Any]:
    doc: Dict[str, Any] = {"id": clause.id, "variableId": clause.variable, "type": clause.type_ref}
    if clause.label is not None:
        doc["label"] = clause.label
    if clause.entries:
        doc["entries"] = list(clause.entries)
    return doc
