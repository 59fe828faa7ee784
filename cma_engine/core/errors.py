"""
Error taxonomy for the comparable valuation engine.

Only failures that change the correctness of a valuation are raised to the
caller. Auxiliary paths (cache, market context, persistence) absorb their
failures, log them, and degrade the response instead.
"""


class EngineError(Exception):
    """Base class for every engine error."""


class InvalidInput(EngineError):
    """Subject input rejected before any computation (field-level reason)."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class UpstreamTimeout(EngineError):
    """A repository or context call exceeded its time budget."""

    def __init__(self, component: str, timeout: float):
        super().__init__(f"{component} timed out after {timeout:g}s")
        self.component = component
        self.timeout = timeout


class CacheUnavailable(EngineError):
    """Cache backend could not be read or written. Never fatal."""


class PersistenceFailure(EngineError):
    """A session or history write failed."""


class SessionNotFound(EngineError):
    def __init__(self, session_ref):
        super().__init__(f"CMA session not found: {session_ref}")
        self.session_ref = session_ref


class SessionAccessDenied(EngineError):
    def __init__(self, session_ref):
        super().__init__(f"Not permitted to modify CMA session: {session_ref}")
        self.session_ref = session_ref
