class LedgerError(Exception):
    """Base class for errors raised by the ledger services."""

    def __init__(self, message=''):
        super().__init__(message)
        self.message = message

    @property
    def messages(self):
        return [self.message] if self.message else []


class NotFoundError(LedgerError):
    """Unknown student, or a period the school has not configured."""


class StoreError(LedgerError):
    """The ledger store failed a read or rejected a write."""
