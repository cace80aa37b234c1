"""Booking detail extraction from caller messages."""

from .types import ExtractedFields
from .extractor import FieldExtractor, get_field_extractor

__all__ = [
    "ExtractedFields",
    "FieldExtractor",
    "get_field_extractor",
]
