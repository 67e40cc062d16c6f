"""
Expectation file loading and validation.

An expectation file is JSON: either a list of expectations or an object
with an ``expectations`` list. Keys may be snake_case or camelCase.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import jsonschema

from .errors import ExpectationError
from .models import Expectation
from .ordering import canonical_sort

logger = logging.getLogger(__name__)


_EXPECTATION_ITEM_SCHEMA = {
    "type": "object",
    "required": ["id", "type", "strength"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "type": {"enum": ["navigation", "network_action", "validation_block", "state_action"]},
        "strength": {"enum": ["PROVEN", "OBSERVED"]},
        "target_path": {"type": ["string", "null"]},
        "targetPath": {"type": ["string", "null"]},
        "url": {"type": ["string", "null"]},
        "state_key": {"type": ["string", "null"]},
        "stateKey": {"type": ["string", "null"]},
        "source_ref": {"type": ["string", "null"]},
        "sourceRef": {"type": ["string", "null"]},
        "selector_hint": {"type": ["string", "null"]},
        "selectorHint": {"type": ["string", "null"]},
        "from_path": {"type": ["string", "null"]},
        "fromPath": {"type": ["string", "null"]},
        "evidence": {"type": "object"},
    },
}

EXPECTATION_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "oneOf": [
        {"type": "array", "items": _EXPECTATION_ITEM_SCHEMA},
        {
            "type": "object",
            "required": ["expectations"],
            "properties": {"expectations": {"type": "array", "items": _EXPECTATION_ITEM_SCHEMA}},
        },
    ],
}


def validate_expectation_data(data: Any) -> None:
    """
    Validate raw expectation data against EXPECTATION_SCHEMA.

    Raises:
        ExpectationError: with the offending item's id when it can be found
    """
    try:
        jsonschema.validate(data, EXPECTATION_SCHEMA)
    except jsonschema.ValidationError:
        # oneOf hides the useful message; re-validate the items for a precise one
        items = data.get("expectations") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ExpectationError("", "expectation file must be a list or an object with 'expectations'")
        for index, item in enumerate(items):
            try:
                jsonschema.validate(item, _EXPECTATION_ITEM_SCHEMA)
            except jsonschema.ValidationError as e:
                exp_id = item.get("id", f"#{index}") if isinstance(item, dict) else f"#{index}"
                path = ".".join(str(p) for p in e.absolute_path)
                detail = f"{path}: {e.message}" if path else e.message
                raise ExpectationError(str(exp_id), f"schema validation failed: {detail}")
        raise ExpectationError("", "expectation file does not match the schema")


def parse_expectations(data: Union[List[Dict[str, Any]], Dict[str, Any]]) -> List[Expectation]:
    """Build Expectation objects from validated data, canonically ordered."""
    validate_expectation_data(data)
    items = data["expectations"] if isinstance(data, dict) else data

    expectations = []
    seen = set()
    for item in items:
        expectation = Expectation.from_dict(item)
        if expectation.id in seen:
            raise ExpectationError(expectation.id, "duplicate expectation id")
        seen.add(expectation.id)
        expectations.append(expectation)
    return canonical_sort(expectations)


def load_expectations(path: Union[str, Path]) -> List[Expectation]:
    """
    Load an expectation file.

    Args:
        path: Path to JSON expectation file

    Returns:
        Canonically ordered list of Expectation

    Raises:
        ExpectationError: if the file is missing, not JSON, or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ExpectationError("", f"expectation file not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ExpectationError("", f"expectation file is not valid JSON: {e}")

    expectations = parse_expectations(data)
    logger.info(f"Loaded {len(expectations)} expectation(s) from {path}")
    return expectations
