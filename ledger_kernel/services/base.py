"""
Shared constructor for the kernel's write services.

A service works inside the session it is given and only ever flushes.
Whoever opened the session (``session_scope()``, the CLI, a test fixture)
decides whether the unit of work commits, so an accrual run or a payment
can span several services in one transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    def __init__(self, session: Session):
        self.session = session

    def _persist(self, *rows) -> None:
        """Add ``rows`` and flush, so ids, defaults and constraints apply now."""
        self.session.add_all(rows)
        self.session.flush()
