"""Rotating display of precomputed QR frames."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from chainreceipt.transport.frames import QRFrame

DEFAULT_INTERVAL = 0.1

ShowFn = Callable[[str], Awaitable[None] | None]


class FrameCarousel:
    """Cycle through frame texts at a fixed interval until told to stop."""

    def __init__(self, frames: Sequence[QRFrame], interval: float = DEFAULT_INTERVAL) -> None:
        if not frames:
            raise ValueError("carousel needs at least one frame")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.texts = [frame.to_json() for frame in frames]
        self.interval = interval
        self._position = 0

    @property
    def current(self) -> str:
        return self.texts[self._position]

    def advance(self) -> str:
        self._position = (self._position + 1) % len(self.texts)
        return self.current

    async def run(self, show: ShowFn, stop: asyncio.Event) -> int:
        """Show frames until ``stop`` is set. Returns the number of frames shown."""
        shown = 0
        while not stop.is_set():
            result = show(self.current)
            if asyncio.iscoroutine(result):
                await result
            shown += 1
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                self.advance()
        return shown
