"""Application-owned port for rendering transfer codes as scannable images."""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CodeEncoder(Protocol):
    """Pure transform from a transfer code string to image bytes.

    May raise; callers treat any failure as "no image" and carry on.
    """

    def encode(self, text: str) -> bytes: ...
