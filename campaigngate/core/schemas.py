"""
Request payload schemas.

Payloads are checked before any handler work starts; schema defaults are
filled in for optional fields that were left out.
"""

import copy
from typing import Any, Dict, List, Mapping

import jsonschema

from .exceptions import InvalidArgumentError

_NON_EMPTY_STRING = {"type": "string", "minLength": 1}

VALIDATE_CAMPAIGN_SCHEMA = {
    "type": "object",
    "properties": {
        "campaignId": _NON_EMPTY_STRING,
        "campaignData": {"type": "object"},
        "validationType": {
            "enum": ["draft", "preview", "publish"],
            "default": "draft",
        },
    },
    "required": ["campaignId", "campaignData"],
}

SUBMIT_FOR_REVIEW_SCHEMA = {
    "type": "object",
    "properties": {
        "campaignId": _NON_EMPTY_STRING,
        "reviewType": {
            "enum": ["content", "compliance", "strategy"],
            "default": "content",
        },
        "priority": {
            "enum": ["low", "medium", "high"],
            "default": "medium",
        },
        "notes": {"type": "string"},
    },
    "required": ["campaignId"],
}

APPROVE_CAMPAIGN_SCHEMA = {
    "type": "object",
    "properties": {
        "campaignId": _NON_EMPTY_STRING,
        "reviewId": _NON_EMPTY_STRING,
        "approvalType": {"enum": ["approve", "reject"]},
        "reason": _NON_EMPTY_STRING,
    },
    "required": ["campaignId", "reviewId", "approvalType", "reason"],
}

EXPORT_TO_WRIKE_SCHEMA = {
    "type": "object",
    "properties": {
        "campaignId": _NON_EMPTY_STRING,
        "exportType": {
            "enum": ["campaign", "tasks", "timeline"],
            "default": "campaign",
        },
        "projectId": {"type": "string"},
        "includeMetadata": {"type": "boolean", "default": True},
    },
    "required": ["campaignId"],
}


def _describe(error: jsonschema.ValidationError) -> str:
    location = ".".join(str(p) for p in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message


def parse_payload(schema: Mapping[str, Any], payload: Any) -> Dict[str, Any]:
    """
    Validate a payload and apply defaults.

    Raises:
        InvalidArgumentError: With every schema problem found
    """
    validator = jsonschema.Draft7Validator(schema)
    problems: List[str] = sorted(_describe(e) for e in validator.iter_errors(payload))
    if problems:
        raise InvalidArgumentError("Invalid input data", problems=problems)

    parsed = copy.deepcopy(dict(payload))
    for name, prop in schema.get("properties", {}).items():
        if name not in parsed and "default" in prop:
            parsed[name] = prop["default"]
    return parsed
