"""
transforms/normalize.py — Scale/unit normalization for retrieved records.

StatCan reports many values in scaled units ("value 42, scalar factor
thousands"). The normalizer turns each RawRecord into a NormalizedRecord
whose value is the absolute number and whose scale column is gone, so
values from different tables can be compared directly.

In factor mode, coded category values are additionally replaced with
their labels from a caller-supplied code table.

Usage:
    from canstat_pipeline.transforms.normalize import ValueNormalizer, normalize

    records = normalize(raw_records)                       # numeric mode
    records = normalize(raw_records, mode="factor",
                        codes={"naics": {"11": "Agriculture"}})
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from canstat_shared.constants import SCALE_MULTIPLIERS, SUPPRESSED, NormalizeMode
from canstat_shared.models import NormalizedRecord, RawRecord
from canstat_pipeline.errors import UnknownUnit

log = structlog.get_logger(__name__)

CodeTable = Mapping[str, Mapping[Any, str]]


def resolve_scale(code: Any) -> Decimal:
    """
    Map a scale/unit code to its multiplier.

    Accepts the StatCan labels ("thousands"), their numeric codes (3) and
    null/empty codes, which mean units.

    Raises:
        UnknownUnit: no rule exists for *code*.
    """
    if code is None:
        return Decimal(1)
    key = str(code).strip().casefold()
    if key == "":
        return Decimal(1)
    try:
        return SCALE_MULTIPLIERS[key]
    except KeyError:
        raise UnknownUnit(code) from None


def parse_value(raw: Any) -> Decimal | None:
    """Parse a raw observation into a Decimal; suppression markers become None."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"Boolean is not an observation value: {raw!r}")
    if isinstance(raw, (int, Decimal)):
        return Decimal(raw)
    if isinstance(raw, float):
        return Decimal(repr(raw))
    s = str(raw).strip()
    if s in SUPPRESSED:
        return None
    try:
        return Decimal(s.replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"Not a numeric observation: {raw!r}") from None


class ValueNormalizer:
    """
    Resolves scale metadata and (optionally) category codes.

    Stateless apart from the code table it is constructed with.
    """

    def __init__(self, codes: CodeTable | None = None) -> None:
        self._codes: dict[str, dict[Any, str]] = {
            field: dict(table) for field, table in (codes or {}).items()
        }

    def normalize_record(
        self,
        record: RawRecord | NormalizedRecord,
        mode: NormalizeMode = "numeric",
    ) -> NormalizedRecord:
        """
        Normalize one record.

        A NormalizedRecord has nothing left to resolve and comes back as-is.
        A RawRecord without a scale column gets multiplier 1.
        """
        if isinstance(record, NormalizedRecord):
            return record if mode == "numeric" else self._apply_codes(record)

        data = dict(record.data)
        multiplier = Decimal(1)
        if record.is_scaled:
            multiplier = resolve_scale(data.pop(record.scale_field))

        field = record.value_field
        if field in data:
            try:
                value = parse_value(data[field])
            except ValueError as exc:
                log.warning(
                    "unparseable_value",
                    field=field,
                    value=data[field],
                    error=str(exc),
                )
                value = None
            data[field] = None if value is None else float(value * multiplier)

        normalized = NormalizedRecord(
            data=data,
            value_field=record.value_field,
            source=record.source,
        )
        return self._apply_codes(normalized) if mode == "factor" else normalized

    def _apply_codes(self, record: NormalizedRecord) -> NormalizedRecord:
        if not self._codes:
            return record
        data = dict(record.data)
        changed = False
        for field, table in self._codes.items():
            if field not in data:
                continue
            label = table.get(data[field])
            if label is None and data[field] is not None:
                label = table.get(str(data[field]))
            if label is not None and label != data[field]:
                data[field] = label
                changed = True
        if not changed:
            return record
        return record.model_copy(update={"data": data})

    def normalize(
        self,
        records: Iterable[RawRecord | NormalizedRecord],
        mode: NormalizeMode = "numeric",
    ) -> list[NormalizedRecord]:
        """
        Normalize a sequence of records.

        Args:
            records: RawRecords from the Fetcher (NormalizedRecords pass through).
            mode:    "numeric" resolves scales; "factor" also maps category
                     codes to labels.

        Returns:
            New list of NormalizedRecord in input order.

        Raises:
            UnknownUnit: a record's scale code has no multiplier rule.
        """
        if mode not in ("numeric", "factor"):
            raise ValueError(f"Unknown normalize mode: {mode!r}")

        t0 = time.monotonic()
        result = [self.normalize_record(r, mode) for r in records]
        log.debug(
            "normalize_complete",
            mode=mode,
            records=len(result),
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        return result


def normalize(
    records: Sequence[RawRecord | NormalizedRecord],
    mode: NormalizeMode = "numeric",
    codes: CodeTable | None = None,
) -> list[NormalizedRecord]:
    """One-shot helper around ValueNormalizer.normalize()."""
    return ValueNormalizer(codes).normalize(records, mode)
