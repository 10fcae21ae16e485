class AppError(Exception):
    """Base app error."""


class InvalidArgumentError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, message: str, item_id: int | None = None, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.item_id = item_id
        self.available = available
        self.requested = requested


class TransactionConflictError(AppError):
    """The store aborted the transaction; the whole operation may be retried."""


class ConfigurationError(AppError):
    pass
