"""
Module: ledger_kernel.selectors.base
Responsibility: Common base for read-only query objects.
Architecture position: Kernel > Selectors.  Imports db/ and models/ only.

Selectors never add, delete, flush or commit, and they return frozen
dataclasses rather than ORM rows.  Balances are not stored anywhere; each
figure is summed from posted lines when asked for.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    def __init__(self, session: Session):
        self.session = session
