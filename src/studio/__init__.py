"""Recurring class scheduling and booking core for a fitness studio.

Projects weekly class templates onto dates, books students transactionally
against capacity and credit balances, keeps instructor history across
reassignments, and aggregates taught minutes into payroll.
"""

from src.studio.archive import ArchiveManager
from src.studio.auth import AuthorizationPolicy
from src.studio.directory import StudioDirectory
from src.studio.ledger import BookingLedger
from src.studio.lifecycle import ClassLifecycleManager
from src.studio.payroll import PayrollAggregator
from src.studio.store import InMemoryStore

__all__ = [
    "ArchiveManager",
    "AuthorizationPolicy",
    "BookingLedger",
    "ClassLifecycleManager",
    "InMemoryStore",
    "PayrollAggregator",
    "StudioDirectory",
]
