"""Chunked QR transport: frame codec, assembler and display loop."""

from chainreceipt.transport.display import FrameCarousel
from chainreceipt.transport.frames import (
    FrameAssembler,
    FrameError,
    QRFrame,
    ScanResult,
    ScanSession,
    encode_frames,
    parse_frame,
)

__all__ = [
    "FrameAssembler",
    "FrameCarousel",
    "FrameError",
    "QRFrame",
    "ScanResult",
    "ScanSession",
    "encode_frames",
    "parse_frame",
]
