from typing import Optional


class PrizePoolError(Exception):
    pass


class ValidationError(PrizePoolError):
    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(PrizePoolError):
    pass


class ConflictError(PrizePoolError):
    pass


class InvalidStateTransitionError(ConflictError):
    pass


class TransactionError(PrizePoolError):
    """Persistence failure mid-commit. The transaction was rolled back; safe to retry."""


class SelectionError(PrizePoolError):
    pass
