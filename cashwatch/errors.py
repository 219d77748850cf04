class CashwatchError(Exception):
    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(CashwatchError):
    """Required configuration is missing. The only fatal condition."""

    code = "configuration"


class ValidationError(CashwatchError):
    """User input does not match the shape the current step expects."""

    code = "validation"


class InsufficientFundsError(CashwatchError):
    code = "insufficient_funds"

    def __init__(self, message: str, available=None, required=None):
        self.available = available
        self.required = required
        super().__init__(message)


class NotFoundError(CashwatchError):
    code = "not_found"


class DomainActionError(CashwatchError):
    code = "domain_action"


class TransportError(CashwatchError):
    code = "transport"


class AuthError(CashwatchError):
    code = "auth"
