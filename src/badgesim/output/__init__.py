"""
Badge Simulator Output Module

Key components:
- JsonLinesWriter / CsvWriter: Event record serialization
- BufferedSink / PacedSink: Batch and time-accelerated delivery
- write_answer_key / write_facility: Ground-truth files
"""

from badgesim.output.writers import (
    CsvWriter,
    EventWriter,
    JsonLinesWriter,
    create_writer,
    write_answer_key,
    write_facility,
)
from badgesim.output.sinks import BufferedSink, EventSink, PacedSink, create_sink

__all__ = [
    "CsvWriter",
    "EventWriter",
    "JsonLinesWriter",
    "create_writer",
    "write_answer_key",
    "write_facility",
    "BufferedSink",
    "EventSink",
    "PacedSink",
    "create_sink",
]
