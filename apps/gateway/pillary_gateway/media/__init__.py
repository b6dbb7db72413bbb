from .mirror import MediaMirror, MediaResponse
from .ranges import parse_range

__all__ = ["MediaMirror", "MediaResponse", "parse_range"]
