"""
Pydantic Models for Feed and Reference Data Validation

Market-data ticks and instrument master rows come from outside the process
and are loosely shaped (field names and presence vary by feed mode and
instrument type), so they are validated with Pydantic before any value is
trusted. Internal state uses dataclasses (see greekfeed.core.models).

Key patterns:
- AliasChoices: short and long feed field names map to one attribute
- Prices stay in feed units (scaled integers); un-scaling happens in the
  normalizer, which owns the feed convention
- Malformed numerics raise ValidationError, which drops that single tick
"""

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class RawDepthLevel(BaseModel):
    """One depth entry as sent by the feed (price scaled)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    price: float = Field(ge=0)
    quantity: int = Field(default=0, ge=0)
    orders: int = Field(default=0, ge=0, validation_alias=AliasChoices("orders", "no of orders"))


class RawTick(BaseModel):
    """
    A single feed tick.

    Attributes:
        token: Instrument identifier
        last_price: Last traded price (scaled)
        best_bid: Best bid (scaled), when the feed sends it flat
        best_ask: Best ask (scaled), when the feed sends it flat
        open_interest: Open interest
        volume: Traded volume for the day
        forward_price: Explicit forward/future price (scaled)
        bid_depth: Best-5 buy depth
        ask_depth: Best-5 sell depth
        exchange_timestamp: Exchange time in epoch milliseconds
        lot_size: Contract-level lot size override
        tick_size: Contract-level tick size override (scaled)
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    token: str = Field(validation_alias=AliasChoices("tk", "token"))
    last_price: float = Field(ge=0, validation_alias=AliasChoices("ltp", "last_traded_price"))
    best_bid: Optional[float] = Field(default=None, ge=0, validation_alias=AliasChoices("bp", "best_bid"))
    best_ask: Optional[float] = Field(default=None, ge=0, validation_alias=AliasChoices("sp", "best_ask"))
    open_interest: int = Field(default=0, ge=0, validation_alias=AliasChoices("oi", "open_interest"))
    volume: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("v", "volume", "volume_trade_for_the_day")
    )
    forward_price: Optional[float] = Field(default=None, ge=0, validation_alias=AliasChoices("f", "forward_price"))
    bid_depth: List[RawDepthLevel] = Field(
        default_factory=list, validation_alias=AliasChoices("best_5_buy_data", "bid_depth")
    )
    ask_depth: List[RawDepthLevel] = Field(
        default_factory=list, validation_alias=AliasChoices("best_5_sell_data", "ask_depth")
    )
    exchange_timestamp: Optional[int] = Field(default=None, ge=0)
    lot_size: Optional[int] = Field(default=None, gt=0, validation_alias=AliasChoices("ls", "lot_size"))
    tick_size: Optional[float] = Field(default=None, gt=0, validation_alias=AliasChoices("ts", "tick_size"))

    @field_validator("token", mode="before")
    @classmethod
    def clean_token(cls, v):
        """Feeds sometimes quote the token or send it as a number."""
        token = str(v).strip().strip('"').strip()
        if not token:
            raise ValueError("token must not be empty")
        return token

    @property
    def scaled_bid(self) -> Optional[float]:
        """Best bid from the flat field, else the top of the depth book."""
        if self.best_bid is not None:
            return self.best_bid
        return self.bid_depth[0].price if self.bid_depth else None

    @property
    def scaled_ask(self) -> Optional[float]:
        """Best ask from the flat field, else the top of the depth book."""
        if self.best_ask is not None:
            return self.best_ask
        return self.ask_depth[0].price if self.ask_depth else None


class ScripRecord(BaseModel):
    """
    One row of the exchange instrument master.

    Strike and tick size are in paise (scaled by 100) in the master file.
    """

    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    name: str = ""
    expiry: str = ""
    strike: float = 0.0
    lotsize: Optional[int] = Field(default=None, gt=0)
    instrumenttype: str = ""
    exch_seg: str = ""
    tick_size: float = 0.0

    @field_validator("token", "symbol", "name", "expiry", "instrumenttype", "exch_seg", mode="before")
    @classmethod
    def strip_strings(cls, v):
        return str(v).strip() if v is not None else ""

    @field_validator("strike", "tick_size", mode="before")
    @classmethod
    def blank_as_zero(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return 0.0
        return v

    @field_validator("lotsize", mode="before")
    @classmethod
    def lotsize_as_int(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return int(float(v)) if v else None
        return v
