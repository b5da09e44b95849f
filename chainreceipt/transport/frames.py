"""Chunked QR transport for payloads too large for a single code.

The payload is base64 encoded and sliced into fixed-size character windows.
Every frame is a small JSON object that names its 1-based position and the
frame count, so a scanner can collect frames in any order::

    {"chunk": 2, "total": 3, "data": "...base64 slice..."}
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any

from chainreceipt.runtime.logging import get_logger
from chainreceipt.util.codec import bytes_to_hex, hex_to_bytes, normalize_hex_prefix

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 1000


class FrameError(ValueError):
    """Raised for frames that cannot belong to the transmission being assembled."""


@dataclass(frozen=True)
class QRFrame:
    chunk: int
    total: int
    data: str

    def to_json(self) -> str:
        return json.dumps({"chunk": self.chunk, "total": self.total, "data": self.data}, separators=(",", ":"))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_frame(text: str) -> QRFrame | None:
    """Parse scanned text as a frame. Returns None for anything that is not one."""
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(value, dict):
        return None
    chunk, total, data = value.get("chunk"), value.get("total"), value.get("data")
    if not (_is_int(chunk) and _is_int(total) and isinstance(data, str)):
        return None
    return QRFrame(chunk=chunk, total=total, data=data)


def encode_frames(payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[QRFrame]:
    """Split ``payload`` into frames of at most ``chunk_size`` base64 characters."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
    encoded = base64.b64encode(payload).decode("ascii")
    if not encoded:
        return [QRFrame(chunk=1, total=1, data="")]
    windows = [encoded[start : start + chunk_size] for start in range(0, len(encoded), chunk_size)]
    return [QRFrame(chunk=index, total=len(windows), data=window) for index, window in enumerate(windows, start=1)]


@dataclass
class FrameAssembler:
    """Order-independent collector for one chunked transmission."""

    _slices: dict[int, str] = field(default_factory=dict)
    _total: int | None = None
    _complete: bool = False

    @property
    def total(self) -> int | None:
        return self._total

    @property
    def received(self) -> int:
        return len(self._slices)

    @property
    def complete(self) -> bool:
        return self._complete

    @property
    def progress(self) -> float:
        if not self._total:
            return 0.0
        return self.received / self._total

    def ingest(self, frame: QRFrame) -> bytes | None:
        """Add a frame; return the payload when the last missing frame arrives.

        The payload is returned exactly once. Duplicates and frames arriving
        after completion are ignored.

        Raises:
            FrameError: when the frame's total disagrees with earlier frames or
                its index is out of range. State is left untouched.
        """
        if self._complete:
            return None
        if frame.total < 1:
            raise FrameError(f"frame total must be positive, got {frame.total}")
        if self._total is not None and frame.total != self._total:
            raise FrameError(f"frame total {frame.total} does not match {self._total}")
        if not 1 <= frame.chunk <= frame.total:
            raise FrameError(f"frame index {frame.chunk} outside 1..{frame.total}")

        if frame.chunk in self._slices:
            return None
        slices = {**self._slices, frame.chunk: frame.data}
        if len(slices) < frame.total:
            self._total = frame.total
            self._slices = slices
            logger.debug("Frame %d/%d received (%d collected)", frame.chunk, frame.total, self.received)
            return None

        encoded = "".join(slices[index] for index in sorted(slices))
        try:
            payload = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise FrameError(f"frame {frame.chunk} completes an invalid base64 payload") from exc
        self._total = frame.total
        self._slices = slices
        self._complete = True
        return payload


@dataclass(frozen=True)
class ScanResult:
    payload: bytes
    chunked: bool
    text: str | None = None

    @property
    def call_hex(self) -> str:
        """The scanned payload as ``0x`` hex call data."""
        if self.text is not None and self.text.startswith("0x") and hex_to_bytes(self.text) is not None:
            return normalize_hex_prefix(self.text)
        return bytes_to_hex(self.payload)


class ScanSession:
    """Front end for a stream of scanned QR texts.

    Frame texts are assembled; any other text is a complete single-code
    payload on its own.
    """

    def __init__(self) -> None:
        self.assembler = FrameAssembler()
        self.result: ScanResult | None = None

    @property
    def done(self) -> bool:
        return self.result is not None

    def feed(self, text: str) -> ScanResult | None:
        if self.result is not None:
            return None
        frame = parse_frame(text)
        if frame is None:
            self.result = ScanResult(payload=text.encode("utf-8"), chunked=False, text=text)
            return self.result
        payload = self.assembler.ingest(frame)
        if payload is None:
            return None
        self.result = ScanResult(payload=payload, chunked=True)
        return self.result

    def reset(self) -> None:
        self.assembler = FrameAssembler()
        self.result = None
