"""
Typed errors shared by every subsystem.

Behavioral Contract:
- Validation failures carry a stable invariant code so callers can branch
  on what was violated without parsing messages.
- Errors are raised before any write; a raised error never leaves a
  partially applied change behind.
- StaleRecordError is internal: the database retries it and only surfaces
  ConflictError once the retry budget is spent.
"""

from typing import Optional


class StreetKernelError(Exception):
    """Base class for all kernel errors."""


class InvariantViolation(StreetKernelError):
    """A request broke a domain rule (range, party, self-reference)."""

    def __init__(self, invariant: str, message: str):
        super().__init__(message)
        self.invariant = invariant
        self.message = message


class InvalidTransitionError(InvariantViolation):
    """A state machine was asked to move along an edge it does not have."""

    def __init__(
        self,
        invariant: str,
        message: str,
        current_state: Optional[str] = None,
    ):
        super().__init__(invariant, message)
        self.current_state = current_state


class NotFoundError(StreetKernelError):
    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class StaleRecordError(StreetKernelError):
    """Optimistic version check failed; the row changed under us."""

    def __init__(self, table: str, identifier: str, expected_version: int):
        super().__init__(
            f"{table} {identifier} changed since version {expected_version}"
        )
        self.table = table
        self.identifier = identifier
        self.expected_version = expected_version


class ConflictError(StreetKernelError):
    """Concurrent writers kept colliding and the retry budget ran out."""

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            f"{operation} conflicted with concurrent writers after {attempts} attempts"
        )
        self.operation = operation
        self.attempts = attempts
