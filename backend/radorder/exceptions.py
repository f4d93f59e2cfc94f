"""
Unified exception hierarchy.

Every business exception derives from BaseAppException and carries:
- type:        error family (validation_error / not_found / invalid_state / ...)
- code:        specific error code (ORDER_NOT_FOUND / INVALID_TRANSITION / ...)
- message:     human readable description
- detail:      optional extra payload (dict / list / None)
- http_status: HTTP status code
- retryable:   whether the caller may retry the same request unchanged

Services only raise; exception_handler formats the response.
"""


class BaseAppException(Exception):
    """Base class for all business exceptions."""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500
    retryable = False

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """Malformed request body. Raised by the intake parsers, 400."""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class NotFound(BaseAppException):
    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404


class Unauthorized(BaseAppException):
    """Caller's organization may not act on the resource, 403."""

    type = 'unauthorized'
    code = 'UNAUTHORIZED'
    http_status = 403


class InvalidState(BaseAppException):
    """
    Transition not legal from the order's current status.

    detail always carries current_status and attempted_status.
    """

    type = 'invalid_state'
    code = 'INVALID_STATE'
    http_status = 400

    def __init__(self, message, current_status=None, attempted_status=None, code=None, detail=None):
        merged = {'current_status': current_status, 'attempted_status': attempted_status}
        if detail:
            merged.update(detail)
        super().__init__(message, code=code, detail=merged)
        self.current_status = current_status
        self.attempted_status = attempted_status


class MissingRequiredData(BaseAppException):
    """Lists every missing field at once, never just the first."""

    type = 'missing_required_data'
    code = 'MISSING_REQUIRED_DATA'
    http_status = 400

    def __init__(self, message, missing_fields, code=None):
        self.missing_fields = list(missing_fields)
        super().__init__(message, code=code, detail={'missing_fields': self.missing_fields})


class TemplateMissing(BaseAppException):
    type = 'configuration_error'
    code = 'PROMPT_TEMPLATE_MISSING'
    http_status = 500


class MalformedLLMOutput(BaseAppException):
    type = 'upstream_error'
    code = 'MALFORMED_LLM_OUTPUT'
    http_status = 502


class AllProvidersExhausted(BaseAppException):
    """
    Every configured LLM provider failed.

    The only transient condition: callers may retry. The message is fixed so
    vendor error text never reaches the client; per-call metrics stay on
    `calls` for the attempt tracker.
    """

    type = 'service_unavailable'
    code = 'VALIDATION_SERVICE_UNAVAILABLE'
    http_status = 503
    retryable = True

    def __init__(self, calls=None):
        self.calls = list(calls or [])
        super().__init__(
            'Validation service unavailable. Please try again shortly.',
            detail={'providers_tried': [c.provider for c in self.calls]},
        )


class PersistenceFailure(BaseAppException):
    """A transaction was rolled back because of a database error."""

    type = 'persistence_error'
    code = 'PERSISTENCE_FAILURE'
    http_status = 500
