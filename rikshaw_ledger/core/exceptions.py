from typing import Optional


class LedgerError(Exception):
    """Base class for errors raised by the ledger services."""


class LoadFailure(LedgerError):
    """A read against the data store failed (connection, timeout or query error)."""

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        message = f"Failed to load {source}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ValidationFailure(LedgerError, ValueError):
    """Proposed data breaks a uniqueness or range rule. Raised before any write."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class IntegrityAmbiguity(LedgerError):
    """A record references a plan, customer or vehicle that cannot be resolved."""

    def __init__(self, message: str, record_id=None):
        self.record_id = record_id
        super().__init__(message)
