"""Domain errors raised by services and mapped to HTTP responses by the API."""


class ServiceError(Exception):
    """Base class for business rule violations."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ServiceError):
    """Input is well-formed but breaks a business rule."""

    status_code = 400


class PermissionDeniedError(ServiceError):
    """Caller's role does not allow the operation."""

    status_code = 403


class NotFoundError(ServiceError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with id {entity_id} not found")


class ConflictError(ServiceError):
    """Operation conflicts with the current state (duplicates, locked rows, ...)."""

    status_code = 409


class ExternalServiceError(ServiceError):
    """Upstream service (VPN panel, pg_dump, ...) failed."""

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(message)
