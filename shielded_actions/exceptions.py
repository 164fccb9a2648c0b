"""
Exceptions for the Shielded Actions prover service.
"""
from typing import Optional


class ShieldedActionsError(Exception):
    """Base exception for all shielded-actions errors"""
    error_kind = "error"


class InvalidInput(ShieldedActionsError):
    """Raised when a request carries a malformed address, amount or hex value"""
    error_kind = "invalid_input"


class InvalidAddress(InvalidInput):
    """Raised when an address is not exactly 20 bytes"""
    error_kind = "invalid_address"


class DependencyUnavailable(ShieldedActionsError):
    """Raised when the external proving toolchain cannot be reached"""
    error_kind = "dependency_unavailable"


class BackendFailure(ShieldedActionsError):
    """
    Raised when the proving toolchain or the remote service reports failure.

    The raw diagnostic text is kept verbatim in ``diagnostic`` for operators.
    """
    error_kind = "backend_failure"

    def __init__(self, message: str, diagnostic: Optional[str] = None):
        self.diagnostic = diagnostic
        super().__init__(message)


class ProofTimeoutError(BackendFailure):
    """Raised when a proving call exceeds the configured job timeout"""
    error_kind = "timeout"


class NotFound(ShieldedActionsError):
    """Raised when no job or proof exists for the given identifier"""
    error_kind = "not_found"


class LockError(ShieldedActionsError):
    """Raised when the job table lock cannot be acquired"""
    error_kind = "lock_error"
