"""
Instrument Registry

In-memory identifier -> ContractMeta map built once from the exchange
instrument master, plus expiry -> strike -> right lookups for chain
navigation.

Key patterns:
- Each master row is validated with ScripRecord; bad rows are skipped
- Strike/expiry/right come from explicit fields, falling back to the
  symbol encoding (NIFTY30MAY2420000CE)
- An unreadable or empty master yields an empty registry (degraded mode)
"""

import json
import re
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from greekfeed.config.engine_config import NormalizerConfig, RegistryConfig
from greekfeed.core.expiry import parse_expiry
from greekfeed.core.models import ContractMeta, InstrumentClass, OptionRight
from greekfeed.models.feed_models import ScripRecord

OPTION_SYMBOL_PATTERN = re.compile(r"^([A-Z&+-]+?)(\d{2}[A-Z]{3}\d{2})(\d+(?:\.\d+)?)([CP]E)$")

TYPE_CODES = {
    "OPTIDX": InstrumentClass.OPTION,
    "OPTSTK": InstrumentClass.OPTION,
    "FUTIDX": InstrumentClass.FUTURE,
    "FUTSTK": InstrumentClass.FUTURE,
    "INDEX": InstrumentClass.SPOT_INDEX,
    "AMXIDX": InstrumentClass.SPOT_INDEX,
    "EQ": InstrumentClass.STOCK,
}

FALLBACK_LOT_SIZES = {
    "BANKNIFTY": 15,
    "FINNIFTY": 40,
    "NIFTY": 50,
}

# Longest first so BANKNIFTY is not read as NIFTY
KNOWN_UNDERLYINGS = ["MIDCPNIFTY", "BANKNIFTY", "FINNIFTY", "NIFTY"]


def classify_instrument(type_code: str, symbol: str = "") -> Optional[InstrumentClass]:
    """Map an exchange type code to an instrument class."""
    code = (type_code or "").upper()
    if code in TYPE_CODES:
        return TYPE_CODES[code]
    if not code and symbol.upper().endswith("-EQ"):
        return InstrumentClass.STOCK
    return None


def fallback_lot_size(underlying: str) -> int:
    return FALLBACK_LOT_SIZES.get(underlying.upper(), 1)


def parse_option_symbol(symbol: str) -> Optional[Tuple[str, date, float, OptionRight]]:
    """
    Decode an option trading symbol.

    Args:
        symbol: e.g. BANKNIFTY30MAY2448000PE

    Returns:
        (underlying, expiry, strike, right) or None if the symbol does not match
    """
    match = OPTION_SYMBOL_PATTERN.match(symbol.upper())
    if not match:
        return None
    underlying, expiry_token, strike_token, right_token = match.groups()
    expiry = parse_expiry(expiry_token)
    if expiry is None:
        return None
    return underlying, expiry, float(strike_token), OptionRight(right_token)


def resolve_underlying(record: ScripRecord) -> str:
    """Underlying from the name field, else a known prefix of the symbol."""
    if record.name:
        return record.name.upper()
    symbol = record.symbol.upper()
    for prefix in KNOWN_UNDERLYINGS:
        if symbol.startswith(prefix):
            return prefix
    return symbol.split("-")[0]


def build_contract(
    record: ScripRecord,
    price_scale: float = 100.0,
    default_tick_size: float = 0.05,
) -> Optional[ContractMeta]:
    """
    Convert a validated master row into ContractMeta.

    Returns:
        ContractMeta, or None if the row is irrelevant or malformed
    """
    instrument_class = classify_instrument(record.instrumenttype, record.symbol)
    if instrument_class is None:
        return None

    underlying = resolve_underlying(record)
    strike: Optional[float] = None
    right: Optional[OptionRight] = None
    expiry = parse_expiry(record.expiry) if record.expiry else None

    if instrument_class == InstrumentClass.OPTION:
        decoded = parse_option_symbol(record.symbol)
        if record.strike > 0:
            strike = record.strike / price_scale
        elif decoded:
            strike = decoded[2]

        symbol_upper = record.symbol.upper()
        if symbol_upper.endswith("CE"):
            right = OptionRight.CALL
        elif symbol_upper.endswith("PE"):
            right = OptionRight.PUT

        if expiry is None and decoded:
            expiry = decoded[1]
        if not record.name and decoded:
            underlying = decoded[0]

    if instrument_class in (InstrumentClass.OPTION, InstrumentClass.FUTURE) and expiry is None:
        return None

    tick_size = record.tick_size / price_scale if record.tick_size > 0 else default_tick_size

    try:
        return ContractMeta(
            identifier=record.token,
            symbol=record.symbol,
            underlying=underlying,
            instrument_class=instrument_class,
            instrument_type=record.instrumenttype.upper(),
            exchange_segment=record.exch_seg.upper(),
            strike=strike,
            right=right,
            expiry=expiry,
            lot_size=record.lotsize or fallback_lot_size(underlying),
            tick_size=tick_size,
        )
    except ValueError:
        return None


class InstrumentRegistry:
    """
    Identifier -> ContractMeta map with chain lookups.

    Built once at startup and treated as read-only afterwards.
    """

    def __init__(self, contracts: Iterable[ContractMeta] = ()):
        self._contracts: Dict[str, ContractMeta] = {}
        # underlying -> expiry -> strike -> {right: identifier}
        self._chain: Dict[str, Dict[date, Dict[float, Dict[OptionRight, str]]]] = defaultdict(
            lambda: defaultdict(dict)
        )
        for contract in contracts:
            self._add(contract)

    def _add(self, contract: ContractMeta) -> None:
        self._contracts[contract.identifier] = contract
        if contract.is_option:
            rights = self._chain[contract.underlying][contract.expiry].setdefault(contract.strike, {})
            rights[contract.right] = contract.identifier

    @classmethod
    def from_records(
        cls,
        records: Iterable[dict],
        config: Optional[RegistryConfig] = None,
        normalizer_config: Optional[NormalizerConfig] = None,
    ) -> "InstrumentRegistry":
        """
        Build a registry from raw instrument master rows.

        Filters to the configured underlyings and derivative segments, caps
        options per underlying when configured, and registers configured spot
        tokens that the master does not carry.

        Args:
            records: Raw master rows (dicts)
            config: Registry filters
            normalizer_config: Source of price scale and default tick size

        Returns:
            InstrumentRegistry
        """
        config = config or RegistryConfig()
        normalizer_config = normalizer_config or NormalizerConfig()
        underlyings = {u.upper() for u in config.underlyings}
        segments = {s.upper() for s in config.segments}

        contracts: List[ContractMeta] = []
        option_counts: Dict[str, int] = defaultdict(int)
        skipped = 0
        total = 0

        for raw in records:
            total += 1
            try:
                record = ScripRecord.model_validate(raw)
            except ValidationError as e:
                skipped += 1
                logger.debug(f"Skipping malformed master row: {e.error_count()} errors")
                continue

            contract = build_contract(
                record,
                price_scale=normalizer_config.price_scale,
                default_tick_size=normalizer_config.default_tick_size,
            )
            if contract is None:
                skipped += 1
                continue

            if contract.identifier in config.spot_tokens:
                contracts.append(contract)
                continue

            if underlyings and contract.underlying not in underlyings:
                continue

            if contract.is_option or contract.is_future:
                if segments and contract.exchange_segment not in segments:
                    continue

            if contract.is_option and config.max_options_per_underlying is not None:
                if option_counts[contract.underlying] >= config.max_options_per_underlying:
                    continue
                option_counts[contract.underlying] += 1

            contracts.append(contract)

        known = {c.identifier for c in contracts}
        for token, underlying in config.spot_tokens.items():
            if token not in known:
                contracts.append(
                    ContractMeta(
                        identifier=token,
                        symbol=underlying,
                        underlying=underlying,
                        instrument_class=InstrumentClass.SPOT_INDEX,
                        instrument_type="INDEX",
                        exchange_segment="NSE",
                        tick_size=normalizer_config.default_tick_size,
                    )
                )

        registry = cls(contracts)
        logger.info(
            f"✓ Built instrument registry: {len(registry)} contracts "
            f"from {total} rows ({skipped} malformed/irrelevant skipped)"
        )
        return registry

    @classmethod
    def from_file(
        cls,
        path: str,
        config: Optional[RegistryConfig] = None,
        normalizer_config: Optional[NormalizerConfig] = None,
    ) -> "InstrumentRegistry":
        """
        Load the instrument master JSON (a list of rows).

        An unreadable, invalid or empty file is logged and produces a registry
        holding only the configured spot tokens.
        """
        records: list = []
        try:
            with open(Path(path), "r") as f:
                data = json.load(f)
            if isinstance(data, list):
                records = data
            else:
                logger.error(f"Instrument master {path} is not a list, starting with empty registry")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load instrument master {path}: {e}, starting with empty registry")

        if not records:
            logger.warning("Instrument master is empty, registry running in degraded mode")

        return cls.from_records(records, config=config, normalizer_config=normalizer_config)

    def __len__(self) -> int:
        return len(self._contracts)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._contracts

    def get(self, identifier: str) -> Optional[ContractMeta]:
        return self._contracts.get(identifier)

    def contracts(self) -> List[ContractMeta]:
        return list(self._contracts.values())

    def expiries(self, underlying: str) -> List[date]:
        """Available option expiries for an underlying, ascending."""
        return sorted(self._chain.get(underlying.upper(), {}).keys())

    def strikes(self, underlying: str, expiry: date) -> List[float]:
        """Available strikes for an expiry, ascending."""
        return sorted(self._chain.get(underlying.upper(), {}).get(expiry, {}).keys())

    def rights(self, underlying: str, expiry: date, strike: float) -> List[OptionRight]:
        rights = self._chain.get(underlying.upper(), {}).get(expiry, {}).get(strike, {})
        return sorted(rights.keys(), key=lambda r: r.value)

    def find_option(
        self, underlying: str, expiry: date, strike: float, right: OptionRight
    ) -> Optional[ContractMeta]:
        rights = self._chain.get(underlying.upper(), {}).get(expiry, {}).get(strike, {})
        identifier = rights.get(right)
        return self._contracts.get(identifier) if identifier else None

    def spot_identifier(self, underlying: str) -> Optional[str]:
        """Identifier of the spot index (or stock) tracking an underlying."""
        for contract in self._contracts.values():
            if contract.underlying == underlying.upper() and contract.instrument_class in (
                InstrumentClass.SPOT_INDEX,
                InstrumentClass.STOCK,
            ):
                return contract.identifier
        return None

    def subscription_tokens(self) -> List[str]:
        """All tracked identifiers, spot instruments first."""
        spot = [c.identifier for c in self._contracts.values() if not (c.is_option or c.is_future)]
        derivatives = [c.identifier for c in self._contracts.values() if c.is_option or c.is_future]
        return spot + derivatives
