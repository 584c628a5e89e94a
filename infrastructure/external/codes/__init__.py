"""Transfer-code image encoders."""
from .segno_encoder import SegnoCodeEncoder

__all__ = ["SegnoCodeEncoder"]
