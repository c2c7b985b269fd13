"""Custom exceptions for the rate limiting service."""


class LimitGateError(Exception):
    """Base class for service exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class StoreUnavailableError(LimitGateError):
    """Raised when the shared state store cannot be read or written.

    The original Redis error is chained as ``__cause__``.
    Maps to HTTP 503 Service Unavailable so clients can tell a failed
    check apart from an exhausted budget.
    """
    status_code = 503
    error_code = "rate_limit_unavailable"

    def __init__(self, operation: str, key: str, detail: str | None = None):
        self.operation = operation
        self.key = key
        message = f"State store {operation} failed for '{key}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CorruptStateError(LimitGateError):
    """Raised when a stored bucket field is not a valid number.

    Only raised in strict state mode; otherwise the field reads as zero.
    """
    status_code = 500
    error_code = "corrupt_rate_limit_state"

    def __init__(self, store_key: str, raw_value: str):
        self.store_key = store_key
        self.raw_value = raw_value
        super().__init__(f"Malformed value {raw_value!r} stored at '{store_key}'")


class InvalidAlgorithmError(LimitGateError):
    """Raised when an unknown rate limiting algorithm is requested.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "invalid_algorithm"

    def __init__(self, algorithm: str, valid: tuple[str, ...] = ("leaky_bucket", "token_bucket")):
        self.algorithm = algorithm
        self.valid = valid
        super().__init__(
            f"Unknown algorithm '{algorithm}'. Expected one of: {', '.join(valid)}"
        )


class MissingKeyError(LimitGateError):
    """Raised when an operation needs a rate limit key and none was given.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "missing_key"

    def __init__(self, detail: str = "Key is required"):
        super().__init__(detail)
