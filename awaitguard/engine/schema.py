"""
Output protocol for awaitguard findings.

Findings leave the engine as JSON objects (protocol v1): byte offsets plus a
line/column range, the absolute path and its ``file://`` URI. The schemas here
describe that contract and are checked with ``jsonschema``; the same machinery
validates the options each rule accepts.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
from jsonschema.exceptions import best_match

from .types import Finding, Rule

PROTOCOL_VERSION = "1"
ENGINE_VERSION = "0.1.0"

_POSITION = {"type": "integer", "minimum": 0}
_LINE = {"type": "integer", "minimum": 1}

FINDING_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "rule_id": {"type": "string"},
        "message_id": {"type": ["string", "null"]},
        "message": {"type": "string"},
        # absolute native path
        "file_path": {"type": "string"},
        "uri": {"type": "string"},
        "start_byte": _POSITION,
        "end_byte": _POSITION,
        # 1-based lines, 0-based columns
        "range": {
            "type": "object",
            "properties": {
                "startLine": _LINE,
                "startCol": _POSITION,
                "endLine": _LINE,
                "endCol": _POSITION,
            },
            "required": ["startLine", "startCol", "endLine", "endCol"],
            "additionalProperties": False,
        },
        "severity": {"enum": ["info", "warn", "error"]},
        "meta": {"type": "object"},
    },
    "required": ["rule_id", "message", "file_path", "uri", "start_byte", "end_byte", "range", "severity"],
    "additionalProperties": False,
}

_TIMING = {"type": "number", "minimum": 0}

RUNNER_OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "awaitguard.protocol": {"const": PROTOCOL_VERSION},
        "engine_version": {"type": "string"},
        "files_scanned": {"type": "integer", "minimum": 0},
        "rules_run": {"type": "integer", "minimum": 0},
        "findings": {"type": "array", "items": FINDING_JSON_SCHEMA},
        "metrics": {
            "type": "object",
            "properties": {"parse_ms": _TIMING, "rules_ms": _TIMING, "total_ms": _TIMING},
            "required": ["parse_ms", "rules_ms", "total_ms"],
            "additionalProperties": False,
        },
    },
    "required": ["awaitguard.protocol", "engine_version", "files_scanned", "rules_run", "findings", "metrics"],
    "additionalProperties": False,
}

_SEVERITY = {"enum": ["info", "warn", "error"]}

# Keys of a config file. Unknown keys are not rejected here; the loader warns
# about them and drops them.
CONFIG_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "enabled_rules": {"type": "array", "items": {"type": "string"}},
        "max_findings_per_file": {"type": "integer", "minimum": 0},
        "severity_threshold": _SEVERITY,
        "rule_severities": {"type": ["object", "null"], "additionalProperties": _SEVERITY},
        "rule_configs": {"type": ["object", "null"], "additionalProperties": {"type": ["object", "null"]}},
        "type_declarations": {
            "type": ["object", "null"],
            "additionalProperties": {"type": ["string", "number"]},
        },
    },
}

_finding_validator = jsonschema.Draft7Validator(FINDING_JSON_SCHEMA)
_output_validator = jsonschema.Draft7Validator(RUNNER_OUTPUT_SCHEMA)
_config_validator = jsonschema.Draft7Validator(CONFIG_JSON_SCHEMA)


def normalize_path_for_protocol(file_path: str) -> Tuple[str, str]:
    """Absolute native path and ``file://`` URI for a finding's file."""
    path = Path(file_path).resolve()
    return str(path), path.as_uri()


def byte_to_line_col(text: str, byte_offset: int) -> Tuple[int, int]:
    """
    Convert a UTF-8 byte offset into text to a position.

    Returns:
        (line, col): line is 1-based, col is 0-based and counts characters
    """
    prefix = text.encode('utf-8')[:max(byte_offset, 0)].decode('utf-8', errors='ignore')
    line_start = prefix.rfind('\n') + 1
    return prefix.count('\n') + 1, len(prefix) - line_start


def create_range_from_bytes(text: str, start_byte: int, end_byte: int) -> Dict[str, int]:
    start_line, start_col = byte_to_line_col(text, start_byte)
    end_line, end_col = byte_to_line_col(text, end_byte)
    return {"startLine": start_line, "startCol": start_col, "endLine": end_line, "endCol": end_col}


def _first_error(validator: jsonschema.Draft7Validator, instance: Any) -> Optional[str]:
    error = best_match(validator.iter_errors(instance))
    return error.message if error is not None else None


def validate_findings(findings: List[Dict[str, Any]]) -> List[str]:
    """One message per invalid finding; empty when all are valid."""
    errors = []
    for i, finding in enumerate(findings):
        message = _first_error(_finding_validator, finding)
        if message is not None:
            errors.append(f"Finding {i}: {message}")
    return errors


def validate_runner_output(output: Dict[str, Any]) -> List[str]:
    message = _first_error(_output_validator, output)
    return [f"Output validation: {message}"] if message is not None else []


def validate_config(values: Dict[str, Any]) -> List[str]:
    """Type errors in a parsed config mapping, each prefixed with the offending key path."""
    return [
        f"{'.'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
        for error in sorted(_config_validator.iter_errors(values), key=lambda e: [str(p) for p in e.path])
    ]


def validate_rule_options(rule: Rule, options: Dict[str, Any]) -> List[str]:
    """Check configured options against the rule's ``options_schema``; every violation is reported."""
    validator = jsonschema.Draft7Validator(rule.meta.options_schema)
    return [
        f"Rule '{rule.meta.id}': {error.message}"
        for error in sorted(validator.iter_errors(options), key=lambda e: list(e.path))
    ]


def finding_to_json(finding: Finding, text: str = "") -> Dict[str, Any]:
    abs_path, uri = normalize_path_for_protocol(finding.file)
    result = {
        "rule_id": finding.rule,
        "message_id": finding.message_id,
        "message": finding.message,
        "file_path": abs_path,
        "uri": uri,
        "start_byte": finding.start_byte,
        "end_byte": finding.end_byte,
        "range": create_range_from_bytes(text, finding.start_byte, finding.end_byte),
        "severity": finding.severity,
    }
    if finding.meta:
        result["meta"] = dict(finding.meta)
    return result


def findings_to_json(findings: List[Finding], text_cache: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
    """
    Convert findings to protocol v1 dictionaries.

    Args:
        findings: Findings from any number of files
        text_cache: Absolute path -> file text, used for line/column ranges.
            Files missing from the cache get ranges at 1:0.
    """
    text_cache = text_cache or {}
    return [
        finding_to_json(f, text_cache.get(normalize_path_for_protocol(f.file)[0], ""))
        for f in findings
    ]
