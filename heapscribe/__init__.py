"""Record heap allocation events as a compact line-based trace and read its lines back."""

__version__ = "1.0.0"

__all__ = [
    "allocationdata",
    "api",
    "env",
    "indices",
    "linereader",
    "linewriter",
    "output",
    "pointermap",
    "recorder",
    "tracetree",
]