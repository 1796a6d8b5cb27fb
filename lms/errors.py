"""Domain exceptions.

Use cases and entity methods raise these with a message that is safe to show
to the user. Views catch them and turn them into a flash message or a JSON
error; ``create_app`` registers a fallback handler for the rest.
"""


class LMSError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self):
        return self.message


class ValidationError(LMSError):
    status_code = 400


class NotFoundError(LMSError):
    status_code = 404


class PermissionDeniedError(LMSError):
    status_code = 403


class AttemptLimitError(LMSError):
    status_code = 409


class InvalidTransitionError(LMSError):
    status_code = 409


def require(value, message):
    """Raise ValidationError when ``value`` is empty or whitespace only."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value


class ExternalServiceError(LMSError):
    """A subprocess or remote service the platform relies on failed."""
    status_code = 502
