"""Upgrade decision-table editor JSON written by older editors.

Schema history:

- v1 (no ``modelVersion``): each input cell holds ``"<operator> <value>"`` in a
  single field keyed by the input expression id.
- v2: cells are split into ``<id>_operator`` and ``<id>_expression``.
- v3: collection operators were renamed (``IN`` -> ``IS IN`` / ``ALL OF`` ...).

v1 tables are rewritten straight into the v3 layout. v2 tables only get their
collection operators renamed.
"""

from __future__ import annotations

import copy
import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CURRENT_MODEL_VERSION = "3"

_COLLECTION_OPERATORS = {
    "IN": "ALL OF",
    "NOT IN": "NONE OF",
    "ANY": "ANY OF",
    "NOT ANY": "NOT ALL OF",
}
_SCALAR_OPERATORS = {
    "IN": "IS IN",
    "NOT IN": "IS NOT IN",
    "ANY": "IS IN",
    "NOT ANY": "IS NOT IN",
}
_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?[dDfFlL]?$|^[+-]?0[xX][0-9a-fA-F]+$")


def migrate(decision_table: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `decision_table` in the current (v3) layout."""
    result = copy.deepcopy(decision_table)
    if result.get("modelVersion") is None and "name" in result:
        _migrate_v1(result)
    if str(result.get("modelVersion")) == "2" and "name" in result:
        _migrate_v2(result)
    return result


def determine_expression_type(value: str) -> Optional[str]:
    """Best-effort type of a literal cell value; ``"-"`` (any) has none."""
    if value == "-":
        return None
    if _NUMBER.match(value):
        return "number"
    try:
        datetime.strptime(value, "%Y-%m-%d")
        return "date"
    except ValueError:
        pass
    if value.lower() in ("true", "false"):
        return "boolean"
    return "string"


def transform_collection_operator(operator: str, input_type: Optional[str]) -> str:
    if not operator or not input_type:
        raise ValueError("operator value and input type must be present")
    table = _COLLECTION_OPERATORS if input_type.lower() == "collection" else _SCALAR_OPERATORS
    return table.get(operator, operator)


def _strip_literal(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    if value.startswith("fn_date("):
        value = value[len("fn_date('"):value.rfind("'")]
    elif value.startswith("date:toDate("):
        value = value[len("date:toDate('"):value.rfind("'")]
    return value


def _input_types(decision_table: Dict[str, Any]) -> Dict[str, Optional[str]]:
    types: Dict[str, Optional[str]] = {}
    for node in decision_table.get("inputExpressions") or []:
        if node.get("id") is not None:
            types[str(node["id"])] = node.get("type")
    return types


def _migrate_v1(decision_table: Dict[str, Any]) -> None:
    name = decision_table.get("name")
    logger.info("decision_table_migration | name=%s from=1 to=%s", name, CURRENT_MODEL_VERSION)
    decision_table["modelVersion"] = CURRENT_MODEL_VERSION

    input_types = _input_types(decision_table)
    rules = decision_table.get("rules")
    if rules is None:
        return

    new_rules = []
    for rule in rules:
        new_rule: Dict[str, Any] = {}
        for input_id in input_types:
            if input_id not in rule:
                continue
            operator: Optional[str] = None
            expression: Optional[str] = None
            old = rule.get(input_id)
            if old is not None and str(old):
                old = str(old)
                if " " in old:
                    operator, expression = old.split(" ", 1)
                else:
                    expression = old
                expression = _strip_literal(expression)
                if not input_types[input_id]:
                    input_types[input_id] = determine_expression_type(expression)

            new_rule[f"{input_id}_operator"] = operator or "=="
            new_rule[f"{input_id}_expression"] = expression or "-"

        for field_id, value in rule.items():
            if field_id in input_types or value is None:
                continue
            new_rule[field_id] = _strip_literal(str(value))
        new_rules.append(new_rule)

    for node in decision_table.get("inputExpressions") or []:
        if node.get("id") is not None:
            node["type"] = input_types.get(str(node["id"]))
    decision_table["rules"] = new_rules


def _migrate_v2(decision_table: Dict[str, Any]) -> None:
    name = decision_table.get("name")
    logger.info("decision_table_migration | name=%s from=2 to=%s", name, CURRENT_MODEL_VERSION)
    decision_table["modelVersion"] = CURRENT_MODEL_VERSION

    input_types = _input_types(decision_table)
    for rule in decision_table.get("rules") or []:
        for input_id, input_type in input_types.items():
            operator_id = f"{input_id}_operator"
            operator = rule.get(operator_id)
            if operator is None:
                continue
            try:
                rule[operator_id] = transform_collection_operator(str(operator), input_type)
            except ValueError:
                logger.warning(
                    "decision_table_migration_skipped | name=%s input=%s operator=%s", name, input_id, operator
                )
