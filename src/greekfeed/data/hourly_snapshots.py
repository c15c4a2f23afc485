"""
Hourly Snapshots Delta Lake Table

Append-only persistence of one record per instrument per hour bucket.

Key features:
- HourlySnapshotRecord: flattened InstrumentSnapshot plus bucket timestamp
- HourlySnapshotsTable: Delta Lake sink, partitioned by bucket date
- Unique on (identifier, bucket_start): duplicates are skipped and counted,
  never overwritten; the rest of the batch is still written
- HourlySnapshotReader: bucket, time-range and latest-bucket queries
"""

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Protocol

import polars as pl
from deltalake import DeltaTable, write_deltalake
from loguru import logger

from greekfeed.core.models import (
    DepthLevel,
    ExpiryType,
    GreeksSet,
    InstrumentClass,
    InstrumentSnapshot,
    OptionRight,
)

KEY_COLUMNS = ["identifier", "bucket_start"]

SCHEMA = pl.Schema({
    "identifier": pl.String,
    "bucket_start": pl.Datetime("us"),
    "symbol": pl.String,
    "underlying": pl.String,
    "instrument_class": pl.String,
    "strike": pl.Float64,
    "option_right": pl.String,
    "expiry": pl.Date,
    "expiry_type": pl.String,
    "last_price": pl.Float64,
    "open_interest": pl.Int64,
    "volume": pl.Int64,
    "best_bid": pl.Float64,
    "best_ask": pl.Float64,
    "bid_depth": pl.String,
    "ask_depth": pl.String,
    "spot_price": pl.Float64,
    "forward_price": pl.Float64,
    "iv": pl.Float64,
    "delta": pl.Float64,
    "gamma": pl.Float64,
    "theta": pl.Float64,
    "vega": pl.Float64,
    "lot_size": pl.Int64,
    "tick_size": pl.Float64,
    "updated_at": pl.Datetime("us"),
    "bucket_date": pl.Date,  # For partitioning
})


def _naive(moment: datetime) -> datetime:
    return moment.replace(tzinfo=None) if moment.tzinfo is not None else moment


def _depth_json(levels) -> str:
    return json.dumps([asdict(level) for level in levels])


def _depth_from_json(payload: Optional[str]):
    if not payload:
        return ()
    return tuple(DepthLevel(**level) for level in json.loads(payload))


@dataclass(slots=True, frozen=True)
class HourlySnapshotRecord:
    """One instrument's state for one hour bucket."""
    identifier: str
    bucket_start: datetime
    snapshot: InstrumentSnapshot

    @classmethod
    def from_snapshot(cls, snapshot: InstrumentSnapshot, bucket_start: datetime) -> "HourlySnapshotRecord":
        return cls(identifier=snapshot.identifier, bucket_start=_naive(bucket_start), snapshot=snapshot)

    def to_row(self) -> dict:
        s = self.snapshot
        greeks = s.greeks
        return {
            "identifier": self.identifier,
            "bucket_start": self.bucket_start,
            "symbol": s.symbol,
            "underlying": s.underlying,
            "instrument_class": s.instrument_class.value,
            "strike": s.strike,
            "option_right": s.right.value if s.right else None,
            "expiry": s.expiry,
            "expiry_type": s.expiry_type.value if s.expiry_type else None,
            "last_price": s.last_price,
            "open_interest": s.open_interest,
            "volume": s.volume,
            "best_bid": s.best_bid,
            "best_ask": s.best_ask,
            "bid_depth": _depth_json(s.bid_depth),
            "ask_depth": _depth_json(s.ask_depth),
            "spot_price": s.spot_price,
            "forward_price": s.forward_price,
            "iv": s.iv,
            "delta": greeks.delta if greeks else None,
            "gamma": greeks.gamma if greeks else None,
            "theta": greeks.theta if greeks else None,
            "vega": greeks.vega if greeks else None,
            "lot_size": s.lot_size,
            "tick_size": s.tick_size,
            "updated_at": _naive(s.updated_at),
            "bucket_date": self.bucket_start.date(),
        }


def snapshot_from_row(row: dict) -> InstrumentSnapshot:
    """Rebuild an InstrumentSnapshot from a stored row."""
    greeks = None
    if row.get("delta") is not None:
        greeks = GreeksSet(
            delta=row["delta"],
            gamma=row["gamma"] or 0.0,
            theta=row["theta"] or 0.0,
            vega=row["vega"] or 0.0,
        )
    instrument_class = InstrumentClass(row["instrument_class"])
    iv = row.get("iv")
    if instrument_class == InstrumentClass.OPTION and (iv is None or greeks is None):
        iv, greeks = None, None

    return InstrumentSnapshot(
        identifier=row["identifier"],
        symbol=row["symbol"],
        underlying=row["underlying"],
        instrument_class=instrument_class,
        last_price=row["last_price"],
        updated_at=row["updated_at"],
        strike=row.get("strike"),
        right=OptionRight(row["option_right"]) if row.get("option_right") else None,
        expiry=row.get("expiry"),
        expiry_type=ExpiryType(row["expiry_type"]) if row.get("expiry_type") else None,
        open_interest=row.get("open_interest") or 0,
        volume=row.get("volume") or 0,
        best_bid=row.get("best_bid"),
        best_ask=row.get("best_ask"),
        bid_depth=_depth_from_json(row.get("bid_depth")),
        ask_depth=_depth_from_json(row.get("ask_depth")),
        spot_price=row.get("spot_price"),
        forward_price=row.get("forward_price"),
        iv=iv,
        greeks=greeks,
        lot_size=row.get("lot_size") or 1,
        tick_size=row.get("tick_size") or 0.05,
    )


@dataclass(slots=True, frozen=True)
class InsertResult:
    """Outcome of an unordered bulk insert."""
    inserted: int
    duplicates: int

    @property
    def attempted(self) -> int:
        return self.inserted + self.duplicates


class SnapshotSink(Protocol):
    """Persistence sink for hourly records."""

    def insert_unordered(self, records: List[HourlySnapshotRecord]) -> InsertResult: ...


class HourlySnapshotsTable:
    """
    Delta Lake table for hourly instrument snapshots.

    Partitioning:
    - bucket_date: Date of the hour bucket
    """

    def __init__(self, table_path: str = "data/lake/hourly_snapshots"):
        """
        Initialize hourly snapshots table.

        Args:
            table_path: Path to Delta Lake table
        """
        self.table_path = Path(table_path)
        self._ensure_table_exists()

    def _ensure_table_exists(self) -> None:
        """Create table if it doesn't exist."""
        if DeltaTable.is_deltatable(str(self.table_path)):
            return

        empty_df = pl.DataFrame(schema=SCHEMA)
        write_deltalake(
            str(self.table_path),
            empty_df.to_arrow(),
            mode="overwrite",
            partition_by=["bucket_date"],
        )

        logger.info(f"✓ Created Delta Lake table: {self.table_path}")

    def get_table(self) -> DeltaTable:
        """Get DeltaTable instance."""
        return DeltaTable(str(self.table_path))

    def read_keys(self) -> pl.DataFrame:
        """Existing (identifier, bucket_start) keys."""
        arrow_table = self.get_table().to_pyarrow_table(columns=KEY_COLUMNS)
        return pl.from_arrow(arrow_table).with_columns(pl.col("bucket_start").cast(pl.Datetime("us")))

    def insert_unordered(self, records: List[HourlySnapshotRecord]) -> InsertResult:
        """
        Append records, skipping any whose (identifier, bucket_start) exists.

        Duplicates within the batch keep the first occurrence. A duplicate
        never aborts the rest of the batch.

        Args:
            records: Hourly records to persist

        Returns:
            InsertResult with inserted and duplicate counts
        """
        if not records:
            return InsertResult(inserted=0, duplicates=0)

        df = pl.DataFrame([record.to_row() for record in records], schema=SCHEMA)
        df_deduped = df.unique(subset=KEY_COLUMNS, keep="first", maintain_order=True)

        existing = self.read_keys()
        if len(existing) > 0:
            new_records = df_deduped.join(existing, on=KEY_COLUMNS, how="anti")
        else:
            new_records = df_deduped

        if len(new_records) > 0:
            write_deltalake(
                str(self.table_path),
                new_records.to_arrow(),
                mode="append",
                partition_by=["bucket_date"],
            )

        result = InsertResult(inserted=len(new_records), duplicates=len(records) - len(new_records))
        logger.info(
            f"✓ Wrote {result.inserted} hourly snapshots "
            f"(deduped from {len(records)}, {result.duplicates} duplicates skipped)"
        )
        return result


class HourlySnapshotReader:
    """
    Read hourly snapshots from Delta Lake.

    Provides bucket, time-range and latest-bucket queries.
    """

    def __init__(self, table_path: str = "data/lake/hourly_snapshots"):
        self.table_path = Path(table_path)

    def _read_all(self) -> pl.DataFrame:
        if not DeltaTable.is_deltatable(str(self.table_path)):
            logger.warning(f"Hourly snapshots table not found: {self.table_path}")
            return pl.DataFrame(schema=SCHEMA)
        return pl.from_arrow(DeltaTable(str(self.table_path)).to_pyarrow_table())

    def read_bucket(self, bucket_start: datetime) -> pl.DataFrame:
        """All instruments recorded for one hour bucket."""
        df = self._read_all()
        return df.filter(pl.col("bucket_start") == _naive(bucket_start)).sort("identifier")

    def read_time_range(
        self,
        identifier: str,
        start: datetime,
        end: datetime,
    ) -> pl.DataFrame:
        """
        Hourly history of one instrument.

        Args:
            identifier: Instrument identifier
            start: Inclusive bucket start
            end: Inclusive bucket end

        Returns:
            Rows ordered by bucket_start
        """
        df = self._read_all()
        return df.filter(
            (pl.col("identifier") == identifier)
            & (pl.col("bucket_start") >= _naive(start))
            & (pl.col("bucket_start") <= _naive(end))
        ).sort("bucket_start")

    def read_day(self, day: date) -> pl.DataFrame:
        df = self._read_all()
        return df.filter(pl.col("bucket_date") == day).sort(["bucket_start", "identifier"])

    def latest_bucket(self) -> Optional[datetime]:
        df = self._read_all()
        if len(df) == 0:
            return None
        return df["bucket_start"].max()

    def latest_snapshots(self) -> List[InstrumentSnapshot]:
        """Snapshots from the most recent bucket, rebuilt as InstrumentSnapshot."""
        bucket = self.latest_bucket()
        if bucket is None:
            return []
        return [snapshot_from_row(row) for row in self.read_bucket(bucket).iter_rows(named=True)]
