"""
mcpx x402 Errors
Exception taxonomy for the payment challenge-response layer
"""

from typing import Optional


class X402Error(Exception):
    """Base class for payment layer errors"""


class ConfigurationError(X402Error):
    """Payment configuration is invalid; surfaced as an internal error, never a 402"""


class UnsupportedNetworkError(ConfigurationError):
    """Raised when a requirement names a network outside every supported family"""


class FacilitatorError(X402Error):
    """Facilitator returned a non-success HTTP status or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentRejected(X402Error):
    """
    A submitted payment was not accepted.

    Always answered with 402 and the current challenge so the caller can
    retry with a valid proof.
    """

    def __init__(self, reason: str, payer: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.payer = payer


class ProofDecodeError(PaymentRejected):
    """X-PAYMENT header could not be decoded into a payment payload"""


class NoMatchingRequirement(PaymentRejected):
    """Decoded payment does not match any offered requirement"""


class VerificationFailed(PaymentRejected):
    """Facilitator rejected the payment or the verify call raised"""


class SettlementFailed(PaymentRejected):
    """Synchronous settlement failed before tool execution"""
