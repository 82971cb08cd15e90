"""
Tests for job fingerprint computation.

Identity = name + frequency + cronExpression + data.
"""

import pytest

from src.dedup.fingerprint import (
    are_jobs_equivalent,
    canonical_form,
    compute_job_fingerprint,
    fingerprint_preview,
    normalize_value,
)
from src.scheduler.entities import JobFrequency


class TestNormalizeValue:
    """Tests for recursive normalization."""

    def test_sorts_nested_keys(self):
        value = {"b": {"y": 1, "x": 2}, "a": [{"d": 1, "c": 2}]}

        result = normalize_value(value)

        assert list(result.keys()) == ["a", "b"]
        assert list(result["b"].keys()) == ["x", "y"]
        assert list(result["a"][0].keys()) == ["c", "d"]

    def test_strips_strings_everywhere(self):
        assert normalize_value({"k": ["  a ", {"n": " b"}]}) == {"k": ["a", {"n": "b"}]}

    def test_preserves_list_order(self):
        assert normalize_value([3, 1, 2]) == [3, 1, 2]

    def test_keeps_scalars(self):
        assert normalize_value(None) is None
        assert normalize_value(1.5) == 1.5
        assert normalize_value(True) is True


class TestComputeJobFingerprint:
    """Tests for the SHA256 identity fingerprint."""

    def test_sha256_hex(self):
        fp = compute_job_fingerprint("report", JobFrequency.DAILY, None, {"a": 1})

        assert len(fp) == 64
        assert fp == fp.lower()
        int(fp, 16)

    def test_deterministic(self):
        first = compute_job_fingerprint("report", JobFrequency.DAILY, None, {"a": 1})
        second = compute_job_fingerprint("report", JobFrequency.DAILY, None, {"a": 1})

        assert first == second

    def test_key_order_independent(self):
        first = compute_job_fingerprint("r", JobFrequency.DAILY, None, {"a": 1, "b": {"c": 1, "d": 2}})
        second = compute_job_fingerprint("r", JobFrequency.DAILY, None, {"b": {"d": 2, "c": 1}, "a": 1})

        assert first == second

    def test_whitespace_insensitive(self):
        first = compute_job_fingerprint(" report ", JobFrequency.CUSTOM, " 0 * * * * ", {"to": " ops "})
        second = compute_job_fingerprint("report", JobFrequency.CUSTOM, "0 * * * *", {"to": "ops"})

        assert first == second

    def test_frequency_string_matches_enum(self):
        assert compute_job_fingerprint("r", "daily", None, {}) == compute_job_fingerprint(
            "r", JobFrequency.DAILY, None, {}
        )

    def test_none_data_equals_empty(self):
        assert compute_job_fingerprint("r", JobFrequency.ONCE, None, None) == compute_job_fingerprint(
            "r", JobFrequency.ONCE, None, {}
        )

    @pytest.mark.parametrize("changed", [
        {"name": "other"},
        {"frequency": JobFrequency.WEEKLY},
        {"cron_expression": "0 0 * * *"},
        {"data": {"a": 2}},
    ])
    def test_each_identity_field_matters(self, changed):
        base = {"name": "r", "frequency": JobFrequency.DAILY, "cron_expression": None, "data": {"a": 1}}
        other = {**base, **changed}

        assert not are_jobs_equivalent(base, other)

    def test_list_order_matters(self):
        assert compute_job_fingerprint("r", JobFrequency.DAILY, None, {"l": [1, 2]}) != compute_job_fingerprint(
            "r", JobFrequency.DAILY, None, {"l": [2, 1]}
        )


class TestFingerprintPreview:
    def test_preview_exposes_canonical_input(self):
        preview = fingerprint_preview("r", JobFrequency.DAILY, None, {"b": 1, "a": 2})

        assert preview["json_input"] == canonical_form("r", JobFrequency.DAILY, None, {"b": 1, "a": 2})
        assert preview["json_input"] == (
            '{"cronExpression":null,"data":{"a":2,"b":1},"frequency":"DAILY","name":"r"}'
        )
        assert preview["fingerprint_short"] == preview["fingerprint"][:16]
