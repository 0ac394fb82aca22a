"""Timetable export package."""

from .timetable import (
    ExportError,
    ExportResult,
    TimetableParseError,
    generate_timetable
)

__all__ = [
    "ExportError",
    "ExportResult",
    "TimetableParseError",
    "generate_timetable"
]
