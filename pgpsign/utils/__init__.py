"""Utility modules for common operations."""

from pgpsign.utils.files import atomic_output, atomic_write_text, ensure_dir

__all__ = [
    "atomic_output",
    "atomic_write_text",
    "ensure_dir",
]
