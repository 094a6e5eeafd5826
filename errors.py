"""
Error taxonomy shared by the store, the query/toggle core and the HTTP layer.

Each error carries a ``kind`` (reported to clients) and the HTTP status the
API maps it to. They are raised where the failure is detected and are never
retried inside the core.
"""


class ServiceError(Exception):
    kind = "ServiceError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidIdentifier(ServiceError):
    kind = "InvalidIdentifier"
    status_code = 400


class ValidationFailed(ServiceError):
    kind = "ValidationFailed"
    status_code = 400


class NotFound(ServiceError):
    kind = "NotFound"
    status_code = 404


class TargetNotFound(NotFound):
    """The video, comment, tweet or channel a toggle points at is absent."""

    kind = "TargetNotFound"


class Unauthorized(ServiceError):
    kind = "Unauthorized"
    status_code = 403


class Unauthenticated(ServiceError):
    kind = "Unauthenticated"
    status_code = 401


class StoreFailure(ServiceError):
    kind = "StoreFailure"
    status_code = 500


class DuplicateEntry(StoreFailure):
    """A write was rejected by a unique index."""

    kind = "DuplicateEntry"
    status_code = 409
