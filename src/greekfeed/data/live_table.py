"""
Live Instrument Table

Owned, lock-protected maps holding the latest InstrumentSnapshot per
identifier and the latest spot price per underlying. Passed explicitly to
the normalizer, projection engine and aggregator.

Key patterns:
- Whole-record replacement under a lock: price fields, IV and Greeks of one
  identifier are never observed half-updated
- Readers take a point-in-time copy and release the lock immediately
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from greekfeed.core.models import ContractMeta, InstrumentClass, InstrumentSnapshot


@dataclass(slots=True, frozen=True)
class SpotQuote:
    """Latest spot/reference price for an underlying."""
    underlying: str
    price: float
    updated_at: datetime


class SpotPriceTable:
    """Underlying -> latest spot price."""

    def __init__(self):
        self._lock = threading.Lock()
        self._quotes: Dict[str, SpotQuote] = {}

    def update(self, underlying: str, price: float, updated_at: datetime) -> None:
        if price <= 0:
            return
        with self._lock:
            self._quotes[underlying.upper()] = SpotQuote(underlying.upper(), price, updated_at)

    def get(self, underlying: str) -> Optional[float]:
        with self._lock:
            quote = self._quotes.get(underlying.upper())
        return quote.price if quote else None

    def quote(self, underlying: str) -> Optional[SpotQuote]:
        with self._lock:
            return self._quotes.get(underlying.upper())

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {name: quote.price for name, quote in self._quotes.items()}


class LiveInstrumentTable:
    """
    Identifier -> latest InstrumentSnapshot.

    Writes are last-write-wins. Snapshots are frozen, so a copy of the map is
    a consistent point-in-time view.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshots: Dict[str, InstrumentSnapshot] = {}

    def upsert(self, snapshot: InstrumentSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.identifier] = snapshot

    def upsert_many(self, snapshots: Iterable[InstrumentSnapshot]) -> int:
        count = 0
        with self._lock:
            for snapshot in snapshots:
                self._snapshots[snapshot.identifier] = snapshot
                count += 1
        return count

    def get(self, identifier: str) -> Optional[InstrumentSnapshot]:
        with self._lock:
            return self._snapshots.get(identifier)

    def snapshot(self) -> Dict[str, InstrumentSnapshot]:
        """Point-in-time copy of the whole table."""
        with self._lock:
            return dict(self._snapshots)

    def options(self, underlying: Optional[str] = None) -> List[InstrumentSnapshot]:
        view = self.snapshot()
        return [
            s for s in view.values()
            if s.instrument_class == InstrumentClass.OPTION
            and (underlying is None or s.underlying == underlying.upper())
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)


class LiveInstrumentView:
    """
    Immutable lookup over a point-in-time copy of the live table.

    Contract metadata comes from the registry; when the registry does not
    know an identifier (e.g., snapshots reloaded from the lake) it is derived
    from the snapshot itself.
    """

    def __init__(self, registry, snapshots: Dict[str, InstrumentSnapshot]):
        self._registry = registry
        self._snapshots = dict(snapshots)

    @classmethod
    def capture(cls, registry, live_table: LiveInstrumentTable) -> "LiveInstrumentView":
        return cls(registry, live_table.snapshot())

    @classmethod
    def from_snapshots(cls, snapshots: Iterable[InstrumentSnapshot], registry=None) -> "LiveInstrumentView":
        return cls(registry, {s.identifier: s for s in snapshots})

    def contract(self, identifier: str) -> Optional[ContractMeta]:
        if self._registry is not None:
            contract = self._registry.get(identifier)
            if contract is not None:
                return contract
        snapshot = self._snapshots.get(identifier)
        if snapshot is None:
            return None
        try:
            return ContractMeta(
                identifier=snapshot.identifier,
                symbol=snapshot.symbol,
                underlying=snapshot.underlying,
                instrument_class=snapshot.instrument_class,
                strike=snapshot.strike,
                right=snapshot.right,
                expiry=snapshot.expiry,
                lot_size=snapshot.lot_size,
                tick_size=snapshot.tick_size,
            )
        except ValueError:
            return None

    def snapshot(self, identifier: str) -> Optional[InstrumentSnapshot]:
        return self._snapshots.get(identifier)

    def options(self, underlying: Optional[str] = None) -> List[InstrumentSnapshot]:
        return sorted(
            (
                s for s in self._snapshots.values()
                if s.instrument_class == InstrumentClass.OPTION
                and (underlying is None or s.underlying == underlying.upper())
            ),
            key=lambda s: (s.expiry, s.strike, s.identifier),
        )
