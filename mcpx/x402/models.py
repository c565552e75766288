"""
mcpx x402 Models
Pydantic models for tool payment requirements and x402 wire payloads
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

X402_VERSION = 1


class PaymentMode(str, Enum):
    """Ordering of settlement relative to tool execution"""

    BEFORE_EXECUTION = 'payBeforeService'
    AFTER_EXECUTION = 'payThenService'


class WireModel(BaseModel):
    """Base for camelCase JSON payloads exchanged with callers and facilitators"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode='json')


# =============================================================================
# TOOL-LEVEL CONFIGURATION
# =============================================================================

class TokenAsset(BaseModel):
    """Token contract a price is denominated in"""
    model_config = ConfigDict(frozen=True)

    address: str
    decimals: int = Field(..., ge=0, le=36)
    eip712: Optional[Dict[str, str]] = None


class TokenAmount(BaseModel):
    """Price given directly in atomic token units"""
    model_config = ConfigDict(frozen=True)

    amount: str
    asset: TokenAsset


Price = Union[str, int, float, Decimal, TokenAmount]


class FacilitatorConfig(BaseModel):
    """Where to reach the facilitator that verifies and settles payments"""
    model_config = ConfigDict(frozen=True)

    url: str
    headers: Optional[Dict[str, str]] = None


class PaymentOptions(BaseModel):
    """Descriptive metadata copied into every challenge variant"""
    model_config = ConfigDict(frozen=True)

    description: Optional[str] = None
    mime_type: Optional[str] = None
    max_timeout_seconds: Optional[int] = None
    input_schema: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None
    custom_paywall_html: Optional[str] = None
    resource: Optional[str] = None
    discoverable: Optional[bool] = None


class ToolPaymentRequirements(BaseModel):
    """
    What a caller must pay to invoke a gated tool.

    pay_to and facilitator are optional; process defaults are applied where
    the requirement is enforced, never stored back here.
    """
    model_config = ConfigDict(frozen=True)

    price: Price
    network: str
    pay_to: Optional[str] = None
    facilitator: Optional[FacilitatorConfig] = None
    mode: Optional[Union[PaymentMode, str]] = None
    config: PaymentOptions = Field(default_factory=PaymentOptions)


def resolve_payment_mode(requirements: Optional[ToolPaymentRequirements] = None) -> PaymentMode:
    """BeforeExecution only when asked for explicitly; anything else settles after execution"""
    if requirements is not None and requirements.mode == PaymentMode.BEFORE_EXECUTION.value:
        return PaymentMode.BEFORE_EXECUTION
    return PaymentMode.AFTER_EXECUTION


class DynamicPaymentContext:
    """Call metadata handed to a dynamic payment resolver"""

    def __init__(self, tool_name: str, headers: Any, body: Dict[str, Any], request: Any = None):
        self.tool_name = tool_name
        self.headers = headers
        self.body = body
        self.request = request

    @property
    def arguments(self) -> Dict[str, Any]:
        params = self.body.get('params') or {}
        return params.get('arguments') or {}


ToolPaymentResolver = Callable[
    [DynamicPaymentContext],
    Union[Optional[ToolPaymentRequirements], Awaitable[Optional[ToolPaymentRequirements]]]
]

ToolPaymentDefinition = Union[ToolPaymentRequirements, ToolPaymentResolver]


# =============================================================================
# WIRE PAYLOADS
# =============================================================================

class PaymentRequirements(WireModel):
    """One acceptable way to pay for a resource (a challenge variant)"""

    scheme: str
    network: str
    max_amount_required: str
    resource: str
    description: str = ''
    mime_type: str = ''
    pay_to: str
    max_timeout_seconds: int = 60
    asset: str
    output_schema: Optional[Dict[str, Any]] = None
    extra: Optional[Dict[str, Any]] = None


class PaymentPayload(WireModel):
    """Decoded X-PAYMENT header"""

    x402_version: int = Field(..., alias='x402Version')
    scheme: str
    network: str
    payload: Dict[str, Any]


class VerifyResponse(WireModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(WireModel):
    success: bool
    error_reason: Optional[str] = None
    payer: Optional[str] = None
    transaction: str = ''
    network: str = ''


class PaymentRequiredResponse(WireModel):
    """402 body returned for a missing or rejected payment"""

    x402_version: int = Field(X402_VERSION, alias='x402Version')
    error: str
    accepts: list
    payer: Optional[str] = None
