"""Error taxonomy for the order lifecycle.

Concurrency losses (``Conflict``, an already-claimed order) and wrong
delivery codes are not exceptions; they come back as typed results so the
caller can tell "someone else got there first" apart from a real failure.
"""


class OrderFlowError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail()
        super().__init__(self.detail)

    def default_detail(self) -> str:
        return self.code.replace("_", " ")


class ValidationError(OrderFlowError):
    status_code = 422
    code = "validation_error"


class NotFound(OrderFlowError):
    status_code = 404
    code = "not_found"


class Forbidden(OrderFlowError):
    status_code = 403
    code = "forbidden"


class IllegalTransition(OrderFlowError):
    status_code = 409
    code = "illegal_transition"

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"cannot move order from {current.value} to {target.value}")


class InvalidSignature(OrderFlowError):
    # callers only ever see the generic text; the reason goes to the server log
    status_code = 400
    code = "invalid_signature"

    def default_detail(self) -> str:
        return "payment verification failed, contact support"


class StoreUnavailable(OrderFlowError):
    status_code = 503
    code = "store_unavailable"
