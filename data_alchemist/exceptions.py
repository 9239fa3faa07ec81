class ExternalPayloadError(Exception):
    """Raised when the interpretation service's output cannot be parsed or does not match the patch schema."""

    pass


class InterpreterUnavailableError(Exception):
    """Raised when an AI feature is used but no interpretation service is configured."""

    pass


class NoDataLoadedError(Exception):
    """Raised when an operation needs datasets but none have been loaded."""

    pass


class EntityNotFoundError(Exception):
    """Raised when a client, worker or task id does not exist in the loaded data."""

    pass


class RuleIndexError(Exception):
    """Raised when a rule is addressed by an index outside the rule list."""

    pass


class ExportBlockedError(Exception):
    """Raised when export is attempted while invalid or circular rules exist."""


class FileReadingError(Exception):
    """Raised when there is an error reading an uploaded file."""

    pass


# Mapping of custom exceptions to HTTP status codes
CUSTOM_ERRORS = {
    ExternalPayloadError: 502,
    InterpreterUnavailableError: 503,
    NoDataLoadedError: 400,
    EntityNotFoundError: 404,
    RuleIndexError: 404,
    ExportBlockedError: 409,
    FileReadingError: 400,
}
