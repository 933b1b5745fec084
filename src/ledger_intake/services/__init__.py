"""
Service layer: job orchestration, dispatch and housekeeping.
"""

from .dispatcher import InlineDispatcher, JobDispatcher
from .import_service import ImportService, statement_source
from .maintenance import STUCK_JOB_MESSAGE, ImportMaintenance

__all__ = [
    "ImportMaintenance",
    "ImportService",
    "InlineDispatcher",
    "JobDispatcher",
    "STUCK_JOB_MESSAGE",
    "statement_source",
]
