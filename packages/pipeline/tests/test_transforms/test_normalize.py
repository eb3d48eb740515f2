"""
tests/test_transforms/test_normalize.py — Unit tests for ValueNormalizer.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from canstat_shared.models import CatalogEntry, NormalizedRecord, RawRecord
from canstat_pipeline.errors import UnknownUnit
from canstat_pipeline.transforms.normalize import (
    ValueNormalizer,
    normalize,
    parse_value,
    resolve_scale,
)


def raw(value, scale="thousands", **extra) -> RawRecord:
    return RawRecord(
        data={"ref_date": "2023-01", "geo": "Canada", "scalar_factor": scale, "value": value, **extra},
        scale_field="scalar_factor",
    )


class TestResolveScale:
    @pytest.mark.parametrize(
        "code,expected",
        [
            ("units", Decimal(1)),
            ("Thousands", Decimal(1000)),
            ("tens of thousands", Decimal(10_000)),
            ("millions", Decimal(1_000_000)),
            ("billions", Decimal(1_000_000_000)),
            ("percentage", Decimal("0.01")),
            ("3", Decimal(1000)),
            (6, Decimal(1_000_000)),
            (None, Decimal(1)),
            ("", Decimal(1)),
        ],
    )
    def test_known_codes(self, code, expected):
        assert resolve_scale(code) == expected

    def test_unknown_code_raises(self):
        with pytest.raises(UnknownUnit) as exc_info:
            resolve_scale("dozens")
        assert exc_info.value.unit_code == "dozens"


class TestParseValue:
    def test_suppression_markers_are_none(self):
        for marker in ("x", "..", "...", "F", ""):
            assert parse_value(marker) is None

    def test_numbers(self):
        assert parse_value("42") == Decimal(42)
        assert parse_value("1,234.5") == Decimal("1234.5")
        assert parse_value(10.5) == Decimal("10.5")

    def test_non_numeric_raises(self):
        with pytest.raises(ValueError):
            parse_value("abc")


class TestNormalize:
    def test_thousands(self):
        [rec] = normalize([raw("42")])
        assert isinstance(rec, NormalizedRecord)
        assert rec.value == 42000

    def test_scale_column_removed(self):
        [rec] = normalize([raw("42")])
        assert "scalar_factor" not in rec.data
        assert rec.data["geo"] == "Canada"

    def test_decimal_arithmetic(self):
        [rec] = normalize([raw("0.1", scale="percentage")])
        assert rec.value == 0.001

    def test_suppressed_value_is_none(self):
        [rec] = normalize([raw("..")])
        assert rec.value is None

    def test_unknown_unit_raises(self):
        with pytest.raises(UnknownUnit):
            normalize([raw("42", scale="furlongs")])

    def test_unscaled_record_keeps_value(self):
        record = RawRecord(data={"geo_uid": "59", "value": "5000879"})
        [rec] = normalize([record])
        assert rec.value == 5000879.0

    def test_idempotent(self):
        once = normalize([raw("42"), raw("12", scale="millions")])
        twice = normalize(once)
        assert [r.data for r in twice] == [r.data for r in once]

    def test_input_not_mutated(self):
        record = raw("42")
        normalize([record])
        assert record.data["scalar_factor"] == "thousands"
        assert record.data["value"] == "42"

    def test_provenance_kept(self):
        entry = CatalogEntry(identifier="T1", title="t", family="statcan")
        record = RawRecord(data={"value": "1"}, source=entry)
        [rec] = normalize([record])
        assert rec.source == entry

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            normalize([raw("1")], mode="bogus")  # type: ignore[arg-type]


class TestFactorMode:
    def test_codes_mapped_to_labels(self):
        codes = {"naics": {"11": "Agriculture", "21": "Mining"}}
        records = [raw("1", naics="11"), raw("2", naics="21")]
        out = normalize(records, mode="factor", codes=codes)
        assert [r.data["naics"] for r in out] == ["Agriculture", "Mining"]
        assert out[0].value == 1000

    def test_unmapped_codes_kept(self):
        out = normalize([raw("1", naics="99")], mode="factor", codes={"naics": {"11": "Agriculture"}})
        assert out[0].data["naics"] == "99"

    def test_numeric_codes_match_string_keys(self):
        out = ValueNormalizer({"sex": {"1": "Male"}}).normalize(
            [RawRecord(data={"sex": 1, "value": 3})], mode="factor"
        )
        assert out[0].data["sex"] == "Male"

    def test_factor_idempotent(self):
        codes = {"naics": {"11": "Agriculture"}}
        once = normalize([raw("1", naics="11")], mode="factor", codes=codes)
        twice = normalize(once, mode="factor", codes=codes)
        assert twice[0].data == once[0].data
