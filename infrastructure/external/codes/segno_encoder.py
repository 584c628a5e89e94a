"""
QR encoder for pix copy-and-paste codes, backed by segno.
"""
from __future__ import annotations

import io

import segno


class SegnoCodeEncoder:
    """Render text as a PNG QR code (error correction level M)."""

    def __init__(self, *, scale: int = 4, border: int = 4) -> None:
        self.scale = scale
        self.border = border

    def encode(self, text: str) -> bytes:
        if not text:
            raise ValueError("Cannot encode an empty transfer code")
        qr = segno.make(text, error="m", micro=False)
        buf = io.BytesIO()
        qr.save(buf, kind="png", scale=self.scale, border=self.border)
        return buf.getvalue()
