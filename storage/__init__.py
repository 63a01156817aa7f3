"""
Storage Module
Diagnostics sinks for generation runs.
"""
from .diagnostics import (
    BaseDiagnosticsSink,
    JsonlDiagnosticsSink,
    MemoryDiagnosticsSink,
    get_diagnostics_sink,
)

__all__ = [
    "BaseDiagnosticsSink",
    "JsonlDiagnosticsSink",
    "MemoryDiagnosticsSink",
    "get_diagnostics_sink",
]
