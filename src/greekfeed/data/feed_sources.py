"""
Feed Sources

The market-data transport is a black box behind the FeedSource protocol:
connect with a token list, then iterate tick batches until the stream ends
or raises.

ReplayFeedSource replays recorded ticks from a JSON-lines file (one batch
or single tick per line); it backs the CLI and the ingestion tests.
"""

import asyncio
import json
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Protocol

from loguru import logger


class FeedError(Exception):
    """Raised when the feed cannot connect or the stream breaks."""


class FeedSource(Protocol):
    """Transport that delivers raw tick batches."""

    async def connect(self, tokens: List[str]) -> None: ...

    def stream(self) -> AsyncIterator[List[dict]]: ...

    async def close(self) -> None: ...


class ReplayFeedSource:
    """
    Replays tick batches from a JSON-lines file.

    Args:
        path: File with one JSON list (batch) or object (single tick) per line
        interval: Seconds to wait between batches
        credentials: Opaque credentials (unused by the replay)
    """

    def __init__(self, path: str, interval: float = 0.0, credentials: Optional[Dict[str, str]] = None):
        self.path = Path(path)
        self.interval = interval
        self.credentials = credentials or {}
        self.tokens: List[str] = []
        self._connected = False

    async def connect(self, tokens: List[str]) -> None:
        if not self.path.exists():
            raise FeedError(f"Replay file not found: {self.path}")
        self.tokens = list(tokens)
        self._connected = True
        logger.info(f"Replay feed connected: {self.path} ({len(self.tokens)} tokens subscribed)")

    async def stream(self) -> AsyncIterator[List[dict]]:
        if not self._connected:
            raise FeedError("Replay feed not connected")

        wanted = set(self.tokens)
        with open(self.path, "r") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError as e:
                    raise FeedError(f"Corrupt replay line {line_no}: {e}")

                batch = payload if isinstance(payload, list) else [payload]
                if wanted:
                    batch = [
                        tick for tick in batch
                        if str(tick.get("tk", tick.get("token", ""))).strip('"') in wanted
                    ]
                if batch:
                    yield batch
                if self.interval > 0:
                    await asyncio.sleep(self.interval)

    async def close(self) -> None:
        self._connected = False
