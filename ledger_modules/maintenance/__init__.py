"""Orphan cleanup and ledger integrity checks."""

from ledger_modules.maintenance.service import (
    IntegrityReport,
    MaintenanceService,
    known_sources,
)

__all__ = ["IntegrityReport", "MaintenanceService", "known_sources"]
