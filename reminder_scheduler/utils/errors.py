class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ConfigurationError(Exception):
    """Raised when the scheduler cannot start because of missing or invalid configuration."""

    def __init__(self, message: str, error_code: str = "CONFIG_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class TransportError(Exception):
    """Custom exception for outbound message delivery errors."""

    def __init__(self, message: str, error_code: str = "TRANSPORT_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
