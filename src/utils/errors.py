"""Custom exception types for consistent error handling."""


class FirestoreUnavailableError(Exception):
    """Raised when Firestore queries fail or are unavailable."""


class InvalidInputError(Exception):
    """Raised when request input validation fails."""


class NotFoundError(Exception):
    """Raised when a requested document does not exist."""


class PermissionDeniedError(Exception):
    """Raised when a user touches a document they do not own."""


class MailDeliveryError(Exception):
    """Raised when the mail transport is missing or rejects a message."""


class GeocodingError(Exception):
    """Raised when the geocoding API is misconfigured or unreachable."""


class GraphExecutionError(Exception):
    """Raised when a graph fails to compile or execute."""
