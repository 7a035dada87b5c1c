"""
Engine Errors

Every failure the engine raises carries a stable ``kind`` string.
The HTTP layer maps kinds to status codes; callers may branch on them.

None of these are retried server-side. ConcurrentModification is the only
one where the caller is expected to refetch and retry (exactly once).
"""


class EngineError(Exception):
    """Base exception for dispute engine errors."""
    kind = "engine_error"


class ValidationError(EngineError):
    """Raised when a payload fails length, cardinality or format rules."""
    kind = "validation_error"


class Unauthorized(EngineError):
    """Raised when the actor's role or identity does not permit the action."""
    kind = "unauthorized"


class InvalidStateTransition(EngineError):
    """Raised when the action is not allowed from the entity's current state."""
    kind = "invalid_state_transition"


class TerminalStateViolation(InvalidStateTransition):
    """
    Raised when an action targets an entity that can never change again.

    A banned compliance, or anything under a resolved/rejected/cancelled
    claim. Subclass of InvalidStateTransition: a terminal entity is a
    state from which no transition exists.
    """
    kind = "terminal_state_violation"


class ConcurrentModification(EngineError):
    """Raised on an optimistic version mismatch or a busy entity lock."""
    kind = "concurrent_modification"


class NotFound(EngineError):
    """Raised when a claim or compliance does not exist."""
    kind = "not_found"


class ChainError(EngineError):
    """Raised when the domain event log fails integrity verification."""
    kind = "chain_error"
