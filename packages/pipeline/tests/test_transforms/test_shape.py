"""
tests/test_transforms/test_shape.py — Unit tests for the shape adapter.
"""

from __future__ import annotations

import polars as pl
import pytest

from canstat_shared.models import NormalizedRecord, RawRecord
from canstat_pipeline.errors import JoinKeyMismatch
from canstat_pipeline.transforms.normalize import normalize
from canstat_pipeline.transforms.shape import records_to_frame, reshape


@pytest.fixture
def wide_df() -> pl.DataFrame:
    """2 regions x 2 variables."""
    return pl.DataFrame(
        {
            "geo_uid": ["59", "35"],
            "population": [5000879.0, 14223942.0],
            "households": [2041835.0, 5491200.0],
        }
    )


@pytest.fixture
def records() -> list[NormalizedRecord]:
    return [
        NormalizedRecord(data={"ref_date": "2023-01", "geo_uid": "01", "value": 42000.0}),
        NormalizedRecord(data={"ref_date": "2023-01", "geo_uid": "35", "value": 10500.0}),
        NormalizedRecord(data={"ref_date": "2023-02", "geo_uid": "01", "value": None}),
        NormalizedRecord(data={"ref_date": "2023-02", "geo_uid": "35", "value": 12000.0}),
    ]


class TestRecordsToFrame:
    def test_from_records(self, records):
        df = records_to_frame(records)
        assert df.columns == ["ref_date", "geo_uid", "value"]
        assert len(df) == 4
        assert df["value"].null_count() == 1

    def test_empty(self):
        assert records_to_frame([]).is_empty()


class TestLong:
    def test_two_by_two_gives_four_rows(self, wide_df):
        long_df = reshape(wide_df, "long")
        assert len(long_df) == 4
        assert long_df.columns == ["geo_uid", "variable", "value"]
        assert set(long_df["variable"].to_list()) == {"population", "households"}

    def test_explicit_index_and_names(self, wide_df):
        long_df = reshape(wide_df, "long", index=["geo_uid"], on="vector", values="amount")
        assert long_df.columns == ["geo_uid", "vector", "amount"]

    def test_mixed_numeric_types_are_unified(self):
        df = pl.DataFrame({"geo_uid": ["59"], "a": [1], "b": [2.5]})
        long_df = reshape(df, "long")
        assert long_df["value"].dtype == pl.Float64

    def test_missing_index_raises(self, wide_df):
        with pytest.raises(ValueError, match="not found"):
            reshape(wide_df, "long", index=["nope"])

    def test_fully_suppressed_values(self):
        raw = [
            RawRecord(
                data={"geo": geo, "scalar_factor": "thousands", "value": marker},
                scale_field="scalar_factor",
            )
            for geo, marker in (("Canada", "x"), ("Ontario", ".."))
        ]
        long_df = reshape(normalize(raw), "long")

        assert long_df.columns == ["geo", "variable", "value"]
        assert long_df["variable"].to_list() == ["value", "value"]
        assert long_df["value"].dtype == pl.Float64
        assert long_df["value"].to_list() == [None, None]


class TestWide:
    def test_pivot_records(self, records):
        wide = reshape(records, "wide", index=["ref_date"], on="geo_uid")
        assert wide.columns == ["ref_date", "01", "35"]
        assert wide["ref_date"].to_list() == ["2023-01", "2023-02"]
        assert wide["01"].to_list() == [42000.0, None]

    def test_round_trip(self, wide_df):
        long_df = reshape(wide_df, "long", index=["geo_uid"])
        back = reshape(long_df, "wide", index=["geo_uid"])
        assert back.equals(wide_df)

    def test_duplicate_cells_raise(self):
        df = pl.DataFrame(
            {"geo_uid": ["59", "59"], "variable": ["pop", "pop"], "value": [1.0, 2.0]}
        )
        with pytest.raises(ValueError, match="share"):
            reshape(df, "wide")

    def test_all_null_values(self):
        df = pl.DataFrame(
            {"geo_uid": ["01", "35"], "variable": ["pop", "pop"], "value": [None, None]}
        )
        wide = reshape(df, "wide")
        assert wide.columns == ["geo_uid", "pop"]
        assert wide["pop"].dtype == pl.Float64
        assert wide["pop"].to_list() == [None, None]

    def test_missing_on_column_raises(self, wide_df):
        with pytest.raises(ValueError, match="not found"):
            reshape(wide_df, "wide", on="variable")


class TestJoined:
    def test_mapping_reference(self, records):
        ref = {"01": "POLYGON((0 0))", "35": "POLYGON((1 1))"}
        joined = reshape(records, "joined", join_key="geo_uid", reference=ref)
        assert joined["geometry"].to_list() == [
            "POLYGON((0 0))", "POLYGON((1 1))", "POLYGON((0 0))", "POLYGON((1 1))",
        ]

    def test_unmatched_key_is_null_when_not_strict(self, records):
        joined = reshape(records, "joined", join_key="geo_uid", reference={"01": "g"})
        assert joined["geometry"].to_list() == ["g", None, "g", None]

    def test_unmatched_key_raises_when_strict(self, records):
        with pytest.raises(JoinKeyMismatch) as exc_info:
            reshape(records, "joined", join_key="geo_uid", reference={"01": "g"}, strict=True)
        assert exc_info.value.keys == ["35"]

    def test_dataframe_reference_keeps_row_order(self, records):
        ref = pl.DataFrame({"geo_uid": ["35", "01"], "name": ["Ontario", "Canada"]})
        joined = reshape(records, "joined", join_key="geo_uid", reference=ref)
        assert joined["name"].to_list() == ["Canada", "Ontario", "Canada", "Ontario"]
        assert joined["ref_date"].to_list() == ["2023-01", "2023-01", "2023-02", "2023-02"]

    def test_object_geometries(self, records):
        shapes = {"01": {"type": "Point"}, "35": {"type": "Polygon"}}
        joined = reshape(records, "joined", join_key="geo_uid", reference=shapes)
        assert joined["geometry"].dtype == pl.Object
        assert joined["geometry"][1] == {"type": "Polygon"}

    def test_requires_join_key(self, records):
        with pytest.raises(ValueError, match="join_key"):
            reshape(records, "joined", reference={})


class TestPurity:
    def test_input_frame_unchanged(self, wide_df):
        before = wide_df.clone()
        reshape(wide_df, "long")
        reshape(wide_df, "joined", join_key="geo_uid", reference={"59": "g"})
        assert wide_df.equals(before)

    def test_unknown_target(self, wide_df):
        with pytest.raises(ValueError, match="target"):
            reshape(wide_df, "tall")  # type: ignore[arg-type]
