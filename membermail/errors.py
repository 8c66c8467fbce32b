"""Exception types raised by membermail components."""


class MemberMailError(Exception):
    """Base class for membermail errors."""


class ValidationError(MemberMailError):
    """Bad or missing input (invalid token, unknown user id, ...)."""


class NotFoundError(MemberMailError):
    """A referenced user or template does not exist."""


class UnknownTemplate(NotFoundError):
    """Template slug is not in the registered catalog."""

    def __init__(self, slug: str):
        super().__init__(f"Unknown template: {slug}")
        self.slug = slug


class StorageUnavailable(MemberMailError):
    """Override storage cannot be resolved."""


class WriteFailure(MemberMailError):
    """Persisting an override failed."""


class TransientSendFailure(MemberMailError):
    """The mail transport refused or failed to send a message."""


class SecurityCheckFailure(MemberMailError):
    """Nonce or request signature mismatch."""
