"""
Standard exit codes for crdindex commands.

Following Unix/POSIX conventions for command-line tools.
"""

# Standard POSIX exit codes
SUCCESS = 0              # Successful termination
GENERAL_ERROR = 1        # General errors
USAGE_ERROR = 2          # Misuse of shell command (wrong arguments, etc.)

# Application-specific exit codes (64-113 are typically available)
NOT_FOUND = 64           # Nothing in the catalog matches the criteria
CONFIG_ERROR = 66        # Configuration file error
DATA_ERROR = 70          # Data format or validation error
PARTIAL_SUCCESS = 71     # Some index units succeeded, some failed
INTERRUPTED = 130        # Terminated by Ctrl+C (SIGINT)


class CommandError(Exception):
    """
    Exception that commands can raise to indicate specific exit codes.
    """
    def __init__(self, message: str, exit_code: int = GENERAL_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


class NotFoundError(CommandError):
    """Raised when nothing in the catalog matches the request."""
    def __init__(self, message: str = "Not found"):
        super().__init__(message, NOT_FOUND)


class ConfigError(CommandError):
    """Raised when there's a configuration error."""
    def __init__(self, message: str):
        super().__init__(message, CONFIG_ERROR)


class PartialSuccessError(CommandError):
    """Raised when some index units succeed and some fail."""
    def __init__(self, message: str, succeeded: int = 0, failed: int = 0):
        super().__init__(message, PARTIAL_SUCCESS)
        self.succeeded = succeeded
        self.failed = failed


# Exit code mappings for common exceptions
EXCEPTION_EXIT_CODES = {
    'FileNotFoundError': GENERAL_ERROR,
    'ValueError': DATA_ERROR,
    'KeyError': DATA_ERROR,
    'JSONDecodeError': DATA_ERROR,
    'ConfigError': CONFIG_ERROR,
    'KeyboardInterrupt': INTERRUPTED,
}


def get_exit_code_for_exception(exc: Exception) -> int:
    """
    Get the appropriate exit code for an exception.

    Args:
        exc: The exception that occurred

    Returns:
        Appropriate exit code
    """
    if isinstance(exc, CommandError):
        return exc.exit_code
    return EXCEPTION_EXIT_CODES.get(exc.__class__.__name__, GENERAL_ERROR)
