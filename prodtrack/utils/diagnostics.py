"""
Diagnostics Collector

Collects data-quality warnings raised while aggregating (missing materials,
missing orders, malformed weights) so callers can surface them next to the
degraded numbers instead of only in the log.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MATERIAL_NOT_FOUND = "material_not_found"
MALFORMED_WEIGHT = "malformed_weight"
ORDER_NOT_FOUND = "order_not_found"
INVALID_TIME_RANGE = "invalid_time_range"


@dataclass(frozen=True)
class Diagnostic:
    """A single degraded-path event"""
    code: str
    message: str
    level: str = "warning"
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


class DiagnosticLog:
    """Collects diagnostics emitted during a calculation."""

    def __init__(self):
        self._entries: List[Diagnostic] = []

    def add_warning(self, code: str, message: str, **context):
        """Add a warning diagnostic."""
        self._add(code, message, "warning", context)

    def add_info(self, code: str, message: str, **context):
        """Add an informational diagnostic."""
        self._add(code, message, "info", context)

    def _add(self, code: str, message: str, level: str, context: Dict[str, Any]):
        """Internal method to add a diagnostic entry."""
        self._entries.append(
            Diagnostic(code=code, message=message, level=level, context=context)
        )

    def clear(self):
        """Clear all diagnostics."""
        self._entries = []

    def get_entries(self, code: Optional[str] = None) -> List[Diagnostic]:
        """Get all entries, optionally only those with the given code."""
        if code is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.code == code]

    def count(self, code: Optional[str] = None) -> int:
        """Number of entries, optionally only those with the given code."""
        return len(self.get_entries(code))

    def summary(self) -> Dict[str, int]:
        """Entry counts grouped by code"""
        counts: Dict[str, int] = {}
        for entry in self._entries:
            counts[entry.code] = counts.get(entry.code, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._entries)


def emit(
    diagnostics: Optional[DiagnosticLog],
    code: str,
    message: str,
    source_logger: Optional[logging.Logger] = None,
    **context
):
    """
    Log a degraded-path warning and record it in the collector, if any.

    Args:
        diagnostics: Optional collector to record the event in
        code: Diagnostic code (e.g. MATERIAL_NOT_FOUND)
        message: Human readable message
        source_logger: Logger of the calling module (defaults to this module's)
        **context: Extra fields stored with the entry
    """
    (source_logger or logger).warning(message)
    if diagnostics is not None:
        diagnostics.add_warning(code, message, **context)
