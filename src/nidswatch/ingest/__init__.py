"""
Alert ingestion pipeline.

Frames raw sensor output into lines, decodes and validates each event,
and persists it through the event store.
"""

from nidswatch.ingest.framer import LineFramer, aiter_lines, iter_lines
from nidswatch.ingest.ingestor import AlertIngestor, decode_line, validate_event

__all__ = [
    "AlertIngestor",
    "LineFramer",
    "aiter_lines",
    "decode_line",
    "iter_lines",
    "validate_event",
]
