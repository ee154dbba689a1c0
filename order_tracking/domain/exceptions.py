class DomainException(Exception):
    pass


class ValidationError(DomainException):
    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


class InvalidTransitionError(DomainException):
    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} is {current} and can no longer be updated (requested: {requested})"
        )


class OrderNotFoundError(DomainException):
    pass


NotFoundError = OrderNotFoundError


class ConflictError(DomainException):
    """Concurrent write detected; re-read the order and retry"""
    retryable = True


class StorageError(DomainException):
    """Transient storage failure"""
    retryable = True
