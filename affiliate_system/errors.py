# affiliate_system/errors.py
"""
Exception hierarchy of the compensation engine.
"""
from enum import Enum


class AffiliateError(Exception):
    """Base class for all engine errors."""

    errorKind = "error"


class ConfigurationError(AffiliateError):
    errorKind = "configuration"


class InvariantViolationError(AffiliateError):
    """Accounting invariant broken (negative volume, double expiry). Never clamped."""

    errorKind = "invariant"


class ValidationError(AffiliateError):
    """Malformed event or reference to an unknown entity."""

    errorKind = "validation"


class PlacementError(ValidationError):
    pass


class ConcurrencyConflictError(AffiliateError):
    errorKind = "concurrency"


class JobSequenceError(AffiliateError):
    """A batch step was started before the step it depends on."""

    errorKind = "sequence"


class SettlementFinalizedError(AffiliateError):
    errorKind = "finalized"


class ClaimErrorCode(Enum):
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    ALREADY_CLAIMED = "already_claimed"
    MISSING_PROOF = "missing_proof"
    INVALID_PROOF = "invalid_proof"
    INVALID_WALLET = "invalid_wallet"


CLAIM_ERROR_MESSAGES = {
    ClaimErrorCode.NOT_FOUND: "Settlement not found",
    ClaimErrorCode.NOT_READY: "Settlement is not ready to claim",
    ClaimErrorCode.ALREADY_CLAIMED: "Settlement already claimed",
    ClaimErrorCode.MISSING_PROOF: "Merkle proof is required",
    ClaimErrorCode.INVALID_PROOF: "Merkle proof does not match the published root",
    ClaimErrorCode.INVALID_WALLET: "Wallet address is not a valid EVM address",
}


class ClaimError(AffiliateError):
    errorKind = "claim"

    def __init__(self, code: ClaimErrorCode, message: str = None):
        self.code = code
        super().__init__(message or CLAIM_ERROR_MESSAGES[code])
