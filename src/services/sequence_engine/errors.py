"""
Sequence engine exceptions.

Every engine error carries a machine-readable ``code`` (matching the API
error codes in ``src.utils.error_handling``) and optional ``details``.
"""


class SequenceEngineError(Exception):
    """Base class for sequence engine errors."""
    code = 'INTERNAL_ERROR'

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SequenceEngineError):
    """Bad sequence or step shape, rejected before anything is persisted."""
    code = 'VALIDATION_ERROR'


class InvalidTransition(ValidationError):
    """A status change that the transition table does not allow."""
    code = 'INVALID_TRANSITION'

    def __init__(self, entity, from_status, to_status):
        super().__init__(
            f"Illegal {entity} transition: {from_status} -> {to_status}",
            {'entity': entity, 'from': from_status, 'to': to_status}
        )
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status


class ConfigurationError(SequenceEngineError):
    """The sequence is not in a shape that allows the operation (e.g. no steps)."""
    code = 'CONFIGURATION_ERROR'


class NotFoundError(SequenceEngineError):
    code = 'NOT_FOUND'

    def __init__(self, resource, resource_id=None):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        super().__init__(message, {'resource': resource, 'id': resource_id})


class GenerationFailure(SequenceEngineError):
    """The AI gateway could not produce content; the execution stays in pending_review."""
    code = 'GENERATION_FAILED'


class DispatchFailure(SequenceEngineError):
    """A channel send failed; the execution is marked failed."""
    code = 'DISPATCH_FAILED'


class ConcurrencyConflict(SequenceEngineError):
    """Another tick claimed the same work first."""
    code = 'CONFLICT'
