"""
Job Fingerprint Computation

Computes a deterministic, portable fingerprint for a job's identity.
Used to detect semantically identical job submissions.

The fingerprint is based on:
- name
- frequency
- cron_expression
- data (the opaque payload)

Properties:
- Deterministic: same inputs always produce same fingerprint
- Key-order independent: dict keys are sorted at every nesting level
- Whitespace tolerant: leading/trailing whitespace stripped from every string
- Stable: SHA256, lowercase hex, 64 characters
"""

import hashlib
import json
from typing import Any, Dict, Optional

from src.scheduler.entities import JobFrequency


def normalize_value(value: Any) -> Any:
    """
    Recursively normalize a value for stable fingerprinting.

    - dict: keys sorted, values normalized
    - list/tuple: order preserved, items normalized
    - str: stripped
    - None: None (serialized as null)
    """
    if value is None:
        return None

    if isinstance(value, dict):
        return {str(k): normalize_value(value[k]) for k in sorted(value.keys(), key=str)}

    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]

    if isinstance(value, str):
        return value.strip()

    return value


def _frequency_value(frequency: Any) -> str:
    if isinstance(frequency, JobFrequency):
        return frequency.value
    return str(frequency).strip().upper()


def canonical_form(
    name: str,
    frequency: Any,
    cron_expression: Optional[str],
    data: Optional[Dict[str, Any]],
) -> str:
    """
    Build the canonical string that is hashed into the fingerprint.

    Returns:
        Compact JSON with sorted keys and fixed separators
    """
    fingerprint_data = normalize_value({
        "name": name,
        "frequency": _frequency_value(frequency),
        "cronExpression": cron_expression,
        "data": data or {},
    })

    return json.dumps(
        fingerprint_data,
        sort_keys=True,
        ensure_ascii=False,
        separators=(',', ':'),
        default=str,
    )


def compute_job_fingerprint(
    name: str,
    frequency: Any,
    cron_expression: Optional[str],
    data: Optional[Dict[str, Any]],
) -> str:
    """
    Compute a deterministic fingerprint for job identity.

    Args:
        name: Job name
        frequency: JobFrequency (or its string value)
        cron_expression: Cron pattern, None unless frequency is CUSTOM
        data: Job payload

    Returns:
        SHA256 hex digest (64 characters)

    Example:
        >>> fp = compute_job_fingerprint("report", JobFrequency.DAILY, None, {"a": 1})
        >>> len(fp)
        64
    """
    json_str = canonical_form(name, frequency, cron_expression, data)
    return hashlib.sha256(json_str.encode('utf-8')).hexdigest()


def fingerprint_preview(
    name: str,
    frequency: Any,
    cron_expression: Optional[str],
    data: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Compute fingerprint and return intermediate data for debugging.

    Returns:
        Dict with fingerprint, short form and the canonical JSON input
    """
    json_str = canonical_form(name, frequency, cron_expression, data)
    fingerprint = hashlib.sha256(json_str.encode('utf-8')).hexdigest()

    return {
        "fingerprint": fingerprint,
        "fingerprint_short": fingerprint[:16],
        "json_input": json_str,
    }


def are_jobs_equivalent(first: Dict[str, Any], second: Dict[str, Any]) -> bool:
    """
    Check whether two field sets would produce the same fingerprint.

    Each dict needs name, frequency, cron_expression and data keys.
    """
    return compute_job_fingerprint(
        first["name"], first["frequency"], first.get("cron_expression"), first.get("data")
    ) == compute_job_fingerprint(
        second["name"], second["frequency"], second.get("cron_expression"), second.get("data")
    )
