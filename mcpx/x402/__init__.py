"""
mcpx x402 Payment Module
HTTP 402 Payment Required gating for paid JSON-RPC tool calls
"""

from .config import X402Config, get_x402_config
from .errors import (
    ConfigurationError,
    FacilitatorError,
    PaymentRejected,
    UnsupportedNetworkError,
    X402Error,
)
from .facilitator import FacilitatorClient, get_facilitator, close_facilitators
from .middleware import X402Middleware
from .models import (
    DynamicPaymentContext,
    FacilitatorConfig,
    PaymentMode,
    PaymentOptions,
    TokenAmount,
    TokenAsset,
    ToolPaymentRequirements,
)
from .paywall import PaywallConfig
from .registry import DynamicPolicy, PaymentPolicyRegistry, StaticPolicy
from .settlement import SettlementTracker

__all__ = [
    "X402Config",
    "get_x402_config",
    "X402Error",
    "ConfigurationError",
    "UnsupportedNetworkError",
    "FacilitatorError",
    "PaymentRejected",
    "FacilitatorClient",
    "get_facilitator",
    "close_facilitators",
    "X402Middleware",
    "DynamicPaymentContext",
    "FacilitatorConfig",
    "PaymentMode",
    "PaymentOptions",
    "TokenAmount",
    "TokenAsset",
    "ToolPaymentRequirements",
    "PaywallConfig",
    "PaymentPolicyRegistry",
    "StaticPolicy",
    "DynamicPolicy",
    "SettlementTracker",
]
