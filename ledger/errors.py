class LedgerServiceError(Exception):
    pass


class NotFoundError(LedgerServiceError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class PostNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class ValidationFailedError(LedgerServiceError):
    pass


class InsufficientBalanceError(ValidationFailedError):
    pass


class BelowMinimumWithdrawalError(ValidationFailedError):
    pass


class InvalidAmountError(ValidationFailedError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class AuthenticationError(LedgerServiceError):
    pass


class PermissionDeniedError(LedgerServiceError):
    pass


class EmailTakenError(LedgerServiceError):
    pass


class StoreError(LedgerServiceError):
    """Raised when a storage backend fails (I/O, constraint, corrupt data)."""
