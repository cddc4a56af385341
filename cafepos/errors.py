"""
Error taxonomy shared by the services, the REST layer and the client.

Every error blocks the triggering action; services raise before committing,
so a failed call never leaves partial state behind.
"""


class PosError(Exception):
    status_code = 400
    code = "pos_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(PosError):
    """Missing or malformed input (empty order, missing cancel reason...)."""
    status_code = 400
    code = "validation_error"


class SettlementError(PosError):
    """Recorded payments do not cover the order total."""
    status_code = 402
    code = "settlement_error"


class AuthorizationError(PosError):
    """Credential rejected. The message never says which check failed."""
    status_code = 403
    code = "authorization_error"

    def __init__(self, message: str = "not authorized", **context):
        super().__init__(message, **context)


class NotFoundError(PosError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: str | None = None, **context):
        detail = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(detail, entity=entity, entity_id=entity_id, **context)


class InvalidStateError(PosError):
    """Transition attempted from a terminal (or otherwise wrong) status."""
    status_code = 409
    code = "invalid_state"


class StaleVersionError(InvalidStateError):
    """Save attempted against an order that changed since it was read."""
    code = "stale_version"

    def __init__(self, entity_id: str, expected: int, actual: int):
        super().__init__(
            f"order {entity_id} was modified (version {actual}, expected {expected})",
            entity_id=entity_id, expected=expected, actual=actual,
        )
        self.expected = expected
        self.actual = actual


class BackendError(PosError):
    """Network/server failure; the message is passed through verbatim."""
    status_code = 502
    code = "backend_error"


ERRORS_BY_CODE: dict[str, type[PosError]] = {
    cls.code: cls
    for cls in (ValidationError, SettlementError, AuthorizationError, NotFoundError,
                InvalidStateError, StaleVersionError, BackendError)
}
