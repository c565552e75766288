"""
mcpx x402 Header Encoding
Base64 JSON codecs for the X-PAYMENT and X-PAYMENT-RESPONSE headers
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict

from pydantic import ValidationError

from .errors import ProofDecodeError
from .models import X402_VERSION, PaymentPayload, SettleResponse

logger = logging.getLogger(__name__)

PAYMENT_HEADER = 'X-PAYMENT'
PAYMENT_RESPONSE_HEADER = 'X-PAYMENT-RESPONSE'
SESSION_HEADER = 'mcp-session-id'


def _b64_json(data: Dict[str, Any]) -> str:
    json_bytes = json.dumps(data, separators=(',', ':')).encode('utf-8')
    return base64.b64encode(json_bytes).decode('utf-8')


def decode_payment(payment_header: str) -> PaymentPayload:
    """
    Decode base64-encoded X-PAYMENT header

    Raises:
        ProofDecodeError: header is not base64 JSON of a payment payload
    """
    try:
        decoded_bytes = base64.b64decode(payment_header)
        data = json.loads(decoded_bytes)
        payment = PaymentPayload.model_validate(data)
    except (binascii.Error, ValueError, ValidationError) as e:
        logger.error(f"Failed to decode payment header: {e}")
        raise ProofDecodeError(f"Invalid or malformed payment header: {e}") from e

    return payment.model_copy(update={'x402_version': X402_VERSION})


def encode_payment(payment: PaymentPayload) -> str:
    """Encode a payment payload for the X-PAYMENT header"""
    return _b64_json(payment.to_wire())


def settle_response_header(settlement: SettleResponse) -> str:
    """Encode settlement result as base64 for X-PAYMENT-RESPONSE header"""
    return _b64_json(settlement.to_wire())


def decode_payment_response(header: str) -> SettleResponse:
    """Decode an X-PAYMENT-RESPONSE header back into a SettleResponse"""
    return SettleResponse.model_validate(json.loads(base64.b64decode(header)))
