"""Custom exceptions for the purchasing backend."""


def _status_value(status):
    return status.value if hasattr(status, 'value') else status


class GestionError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error_type'] = type(self).__name__
        return rv


class ValidationError(GestionError):
    """Malformed input, raised before anything is persisted."""
    def __init__(self, message, field=None, payload=None):
        payload = dict(payload or ())
        if field:
            payload['field'] = field
        super().__init__(message, 400, payload)
        self.field = field


class StateError(GestionError):
    """Operation not allowed for the purchase's current status."""
    def __init__(self, message, current_status=None, allowed_statuses=None):
        current = _status_value(current_status)
        allowed = [_status_value(s) for s in (allowed_statuses or [])]
        super().__init__(message, 409, {
            'current_status': current,
            'allowed_statuses': allowed,
        })
        self.current_status = current
        self.allowed_statuses = allowed


class ReferenceNotFoundError(GestionError):
    """A referenced product or supplier no longer exists."""
    def __init__(self, message, entity=None, entity_id=None):
        super().__init__(message, 422, {'entity': entity, 'entity_id': entity_id})
        self.entity = entity
        self.entity_id = entity_id


class NotFoundError(GestionError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ConcurrencyError(GestionError):
    """Transaction timed out or hit a lock conflict; safe to retry."""
    def __init__(self, message="Conflicto de concurrencia, intente nuevamente", payload=None):
        super().__init__(message, 503, payload)
