class LedgerError(Exception):
    """Base class for every error raised by credledger."""


class InvalidArgument(LedgerError, ValueError):
    """A required argument was missing or malformed (caller bug)."""


class InvalidCredential(InvalidArgument):
    pass


class SigningError(LedgerError):
    pass


class ConfigError(LedgerError):
    pass
