"""
Structured response parser

The model is asked for JSON only, but replies often wrap it in prose or
code fences. The payload is taken as the greedy span from the first '{'
to the last '}'.
"""

import json
import re
from typing import Any, Dict, List

from smoldev.exceptions import MalformedResponseError
from smoldev.logging_config import logger


JSON_SPAN = re.compile(r'\{.*\}', re.DOTALL)


def find_json(text: str) -> str:
    """Return the first-'{' to last-'}' span of text, or raise"""
    match = JSON_SPAN.search(text)
    if not match:
        raise MalformedResponseError("no JSON object found in response", raw_text=text)
    return match.group(0)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Locate and decode the JSON object embedded in a response"""
    span = find_json(text)
    try:
        payload = json.loads(span)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"failed to unmarshal response: {e}", raw_text=text) from e

    if not isinstance(payload, dict):
        raise MalformedResponseError("response payload is not a JSON object", raw_text=text)

    logger.debug(f"[ResponseParser] Parsed JSON object with keys {sorted(payload)}")
    return payload


def parse_filepaths(text: str) -> List[str]:
    """Parse the planning response: {"filepaths": [...], "reasoning": [...]}"""
    payload = parse_json_object(text)
    filepaths = payload.get("filepaths")
    if not isinstance(filepaths, list) or not all(isinstance(p, str) for p in filepaths):
        raise MalformedResponseError("response has no \"filepaths\" list of strings", raw_text=text)
    return filepaths


def parse_shared_dependencies(text: str) -> Dict[str, Any]:
    """Parse the dependency response: {"shared_dependencies": [...], "reasoning": [...]}"""
    payload = parse_json_object(text)
    records = payload.get("shared_dependencies")
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise MalformedResponseError("response has no \"shared_dependencies\" list of objects", raw_text=text)

    reasoning = payload.get("reasoning") or []
    if not isinstance(reasoning, list):
        reasoning = [str(reasoning)]

    return {"shared_dependencies": records, "reasoning": reasoning}
