"""
Referral domain exceptions.

Every failure carries a stable `kind` and a `retryable` flag so callers can
tell "retry won't help" (validation, authorization, not found) from
"retry might help" (vendor failures, lost optimistic-concurrency races).
"""


class ReferralError(Exception):
    """Base exception for all referral domain errors"""
    kind = "error"
    retryable = False


class ReferralValidationError(ReferralError):
    """Raised when input has the wrong shape, before touching the store"""
    kind = "validation"


class AuthorizationError(ReferralError):
    """Raised on a role or affiliation mismatch"""
    kind = "authorization"


class InvalidContractorError(AuthorizationError):
    """Raised when the contractor does not exist or is not a contractor"""
    pass


class InvalidReferrerError(AuthorizationError):
    """Raised when the referrer does not exist, is not a homeowner, or belongs to another contractor"""
    pass


class NotFoundError(ReferralError):
    """Raised when an id or code does not resolve"""
    kind = "not_found"


class ReferralNotFoundError(NotFoundError):
    """Raised when a referral id or code does not exist"""
    pass


class ConflictError(ReferralError):
    """Raised when a write would violate a uniqueness or lifecycle rule"""
    kind = "conflict"


class DuplicateAddressError(ConflictError):
    """Raised when another referral of the same contractor already carries the address"""
    pass


class CodeGenerationExhausted(ConflictError):
    """Raised when every bounded code-generation attempt collided"""
    pass


class CodeCollisionError(ConflictError):
    """Raised by a repository when an inserted referral code already exists"""
    pass


class AddressAlreadyResolvedError(ConflictError):
    """Raised when a referral that already resolved to a customer is re-pointed"""
    pass


class ReferralAlreadyVerifiedError(ConflictError):
    """Raised when a verification arrives for an already-verified referral"""
    pass


class ReferralExpiredError(ConflictError):
    """Raised when a pending referral code is used past its expiry"""
    pass


class RewardNotEligibleError(ConflictError):
    """Raised when a reward is requested for a referral that is not complete"""
    pass


class StaleWriteError(ConflictError):
    """Raised when a conditional update lost a race against another writer"""
    kind = "stale_write"
    retryable = True


class DependencyError(ReferralError):
    """Raised when an external vendor (email, SMS, payouts) fails"""
    kind = "dependency"
    retryable = True


class RewardDispatchError(DependencyError):
    """Raised when the payout provider rejects or fails a reward"""
    pass
