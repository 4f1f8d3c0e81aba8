"""
Domain modules built on the ledger kernel.

Each module turns one family of back-office events (rent accrual, payments,
deposits, expenses) into balanced drafts and posts them through the kernel's
PostingEngine; ``reporting`` is the only module that aggregates balances and
``maintenance`` wraps the audited cleanup operations.
"""
