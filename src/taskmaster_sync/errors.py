"""Error taxonomy for the webhook pipeline.

Every pipeline error carries the HTTP status the boundary should answer with.
Signature and shape errors are terminal: the provider's own delivery retry is
the only retry path.
"""


class WebhookError(Exception):
    """Base exception for webhook pipeline failures."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class SignatureInvalid(WebhookError):
    """Webhook signature could not be verified."""

    status_code = 401


class MalformedPayload(WebhookError):
    """Webhook payload is not a recognized webhook."""

    status_code = 400


class IncompleteRepositoryIdentity(MalformedPayload):
    """Repository identity fields are incomplete."""


class UnknownRepository(WebhookError):
    """Repository is not tracked by any project."""

    status_code = 404


class ResolutionFailure(WebhookError):
    """Project could not be resolved."""

    status_code = 500


class DispatchFailure(WebhookError):
    """Sync could not be dispatched."""

    status_code = 500


class StorageError(Exception):
    """Raised when the persistence layer fails."""
    pass


class ProjectAlreadyExists(StorageError):
    """Raised when a project with the same git identity already exists."""
    pass


class TagConflict(StorageError):
    """Raised when a project tag is already taken."""
    pass


class InvalidTransition(StorageError):
    """Raised when a sync history record cannot move to the requested status."""
    pass


class EnqueueError(Exception):
    """Raised when the job queue refuses a job."""
    pass
