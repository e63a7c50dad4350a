"""Exception types for the staking protocol.

Every operation either completes or raises one of these; the transaction
journal (`stakeflow.state.chain`) rolls back all component state before the
exception reaches the caller.

``code`` is a stable identifier suitable for logs and API surfaces.
``retryable`` marks failures that can succeed later without changing the call
(waiting for an epoch/cycle, or for an override to be lifted).
"""

from __future__ import annotations


class StakingError(Exception):
    """Base class for all protocol failures."""

    code: str = "staking_error"
    retryable: bool = False


class InsufficientBalance(StakingError):
    code = "insufficient_balance"


class InsufficientReserveFunds(StakingError):
    code = "insufficient_reserve_funds"


class NotAuthorized(StakingError):
    """Raised when a capability check fails."""

    code = "not_authorized"


class OutOfRange(StakingError):
    code = "out_of_range"


class NotYetVested(StakingError):
    """Raised when escrowed funds are requested before their release epoch/cycle."""

    code = "not_yet_vested"
    retryable = True


class ZeroAddress(StakingError):
    code = "zero_address"


class ZeroAmount(StakingError):
    code = "zero_amount"


class Paused(StakingError):
    """Raised when an administrative override disables the operation."""

    code = "paused"
    retryable = True


class NotPoolCaller(StakingError):
    """Raised when a reserved entry point is invoked by anyone but its bound caller."""

    code = "not_pool_caller"


class Reentrancy(StakingError):
    code = "reentrancy"


class AlreadyInitialized(StakingError):
    code = "already_initialized"


class NotInitialized(StakingError):
    code = "not_initialized"


class InvariantViolation(StakingError):
    """Raised when protocol state violates one or more invariants."""

    code = "invariant_violation"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
