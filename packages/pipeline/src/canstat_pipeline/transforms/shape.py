"""
transforms/shape.py — Reshape normalized records for downstream use.

Three target shapes:
  wide    — one row per entity, one column per variable (pivot)
  long    — one row per (entity, variable, value) triple (unpivot)
  joined  — records left-joined onto a geometry / reference table

Every function takes records (or a DataFrame) and returns a new polars
DataFrame; inputs are never modified.

Usage:
    from canstat_pipeline.transforms.shape import reshape

    long_df = reshape(records, "long", index=["geo_uid"])
    wide_df = reshape(long_df, "wide", index=["geo_uid"])
    geo_df = reshape(records, "joined", join_key="geo_uid",
                     reference={"59": bc_polygon}, strict=True)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import polars as pl
import structlog

from canstat_shared.constants import ShapeTarget
from canstat_shared.models import NormalizedRecord, RawRecord
from canstat_pipeline.errors import JoinKeyMismatch

log = structlog.get_logger(__name__)

Records = Sequence[NormalizedRecord | RawRecord] | pl.DataFrame

_ROW = "__row_nr"


def records_to_frame(records: Records) -> pl.DataFrame:
    """Build a DataFrame from records (a DataFrame input is returned as a copy)."""
    if isinstance(records, pl.DataFrame):
        return records.clone()
    rows = [dict(r.data) for r in records]
    if not rows:
        return pl.DataFrame()
    return pl.from_dicts(rows, infer_schema_length=None)


def to_long(
    df: pl.DataFrame,
    *,
    index: Sequence[str] | None = None,
    variable_name: str = "variable",
    value_name: str = "value",
) -> pl.DataFrame:
    """
    Unpivot every non-index column into (index…, variable, value) rows.

    Args:
        df:            Wide input.
        index:         Entity columns. Defaults to the non-numeric columns.
        variable_name: Output column holding the former column names.
        value_name:    Output column holding the values.

    Returns:
        Long DataFrame, variables stacked in column order.
    """
    if index is None:
        # An all-null column is a fully suppressed value column, not an entity key
        index = [
            c for c, dtype in df.schema.items()
            if not (dtype.is_numeric() or dtype == pl.Null)
        ]
    missing = [c for c in index if c not in df.columns]
    if missing:
        raise ValueError(f"Index column(s) {missing} not found. Columns: {df.columns}")

    on = [c for c in df.columns if c not in index]
    if not on:
        raise ValueError("No variable columns left to unpivot")

    # unpivot needs one value dtype
    dtypes = {df.schema[c] for c in on}
    if len(dtypes) > 1 or any(d == pl.Null for d in dtypes):
        numeric = all(d.is_numeric() or d == pl.Null for d in dtypes)
        df = df.with_columns(pl.col(on).cast(pl.Float64 if numeric else pl.String))

    return df.unpivot(
        on=on,
        index=list(index),
        variable_name=variable_name,
        value_name=value_name,
    )


def to_wide(
    df: pl.DataFrame,
    *,
    on: str = "variable",
    values: str = "value",
    index: Sequence[str] | None = None,
) -> pl.DataFrame:
    """
    Pivot long rows so each distinct *on* value becomes a column.

    Args:
        df:     Long input.
        on:     Column whose values become column names.
        values: Column holding the cell values.
        index:  Entity columns. Defaults to every other column.

    Returns:
        Wide DataFrame, one row per entity in first-seen order.

    Raises:
        ValueError: missing columns, or more than one value per cell.
    """
    for col in (on, values):
        if col not in df.columns:
            raise ValueError(f"Column {col!r} not found. Columns: {df.columns}")
    if index is None:
        index = [c for c in df.columns if c not in (on, values)]
    if not index:
        raise ValueError("Pivot needs at least one index column")

    dupes = df.select([*index, on]).is_duplicated()
    if dupes.any():
        raise ValueError(
            f"{int(dupes.sum())} rows share an (index, {on}) pair; "
            f"pass a more specific index"
        )

    if df.schema[values] == pl.Null:
        df = df.with_columns(pl.col(values).cast(pl.Float64))

    return df.pivot(on=on, index=list(index), values=values, aggregate_function=None)


def _reference_column(
    keys: Iterable[Any],
    reference: Mapping[Any, Any],
    name: str,
) -> pl.Series:
    looked_up = [reference.get(k) for k in keys]
    if all(v is None or isinstance(v, str) for v in looked_up):
        return pl.Series(name, looked_up, dtype=pl.String)
    # Geometry objects are carried through untouched
    return pl.Series(name, looked_up, dtype=pl.Object)


def join_reference(
    df: pl.DataFrame,
    join_key: str | None,
    reference: Mapping[Any, Any] | pl.DataFrame | None,
    *,
    strict: bool = False,
    geometry_col: str = "geometry",
) -> pl.DataFrame:
    """
    Left-join records onto a reference table by *join_key*.

    Args:
        df:           Records as a DataFrame.
        join_key:     Column present in both sides.
        reference:    Mapping key -> geometry/reference value, or a DataFrame
                      containing *join_key*.
        strict:       Raise when any record has no reference match.
        geometry_col: Output column for mapping references.

    Returns:
        New DataFrame in input row order; unmatched rows carry nulls.

    Raises:
        JoinKeyMismatch: strict and at least one key is unmatched.
    """
    if not join_key:
        raise ValueError("A joined reshape needs a join_key")
    if reference is None:
        raise ValueError("A joined reshape needs a reference table")
    if join_key not in df.columns:
        raise ValueError(f"Join key {join_key!r} not found. Columns: {df.columns}")

    if isinstance(reference, pl.DataFrame):
        if join_key not in reference.columns:
            raise ValueError(f"Join key {join_key!r} not in reference table")
        ref_keys = set(reference[join_key].drop_nulls().to_list())
    else:
        ref_keys = set(reference)

    keys = df[join_key].to_list()
    unmatched = list(dict.fromkeys(k for k in keys if k not in ref_keys))
    if unmatched:
        if strict:
            raise JoinKeyMismatch(join_key, unmatched)
        log.warning("unmatched_join_keys", join_key=join_key, count=len(unmatched))

    if isinstance(reference, pl.DataFrame):
        ref = reference.with_columns(pl.col(join_key).cast(df.schema[join_key]))
        return (
            df.with_row_index(_ROW)
            .join(ref, on=join_key, how="left")
            .sort(_ROW)
            .drop(_ROW)
        )
    return df.with_columns(_reference_column(keys, reference, geometry_col))


def reshape(
    records: Records,
    target: ShapeTarget,
    join_key: str | None = None,
    *,
    index: Sequence[str] | None = None,
    on: str = "variable",
    values: str = "value",
    reference: Mapping[Any, Any] | pl.DataFrame | None = None,
    strict: bool = False,
) -> pl.DataFrame:
    """
    Reshape records into the requested target table.

    Args:
        records:   NormalizedRecords (or a DataFrame from a previous reshape).
        target:    "wide", "long" or "joined".
        join_key:  Join column for "joined".
        index:     Entity columns for "wide" / "long".
        on:        Variable column name ("wide" input, "long" output).
        values:    Value column name ("wide" input, "long" output).
        reference: Geometry / reference table for "joined".
        strict:    For "joined", raise JoinKeyMismatch on unmatched keys.

    Returns:
        A new polars DataFrame.
    """
    df = records_to_frame(records)

    match target:
        case "wide":
            out = to_wide(df, on=on, values=values, index=index)
        case "long":
            out = to_long(df, index=index, variable_name=on, value_name=values)
        case "joined":
            out = join_reference(df, join_key, reference, strict=strict)
        case _:
            raise ValueError(f"Unknown reshape target: {target!r}")

    log.debug("reshape_complete", target=target, rows_in=len(df), rows_out=len(out))
    return out
