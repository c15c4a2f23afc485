"""Pydantic models for external data (feed ticks, instrument master rows)."""

from greekfeed.models.feed_models import RawDepthLevel, RawTick, ScripRecord

__all__ = ["RawDepthLevel", "RawTick", "ScripRecord"]
