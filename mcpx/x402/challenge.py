"""
mcpx x402 Challenge
Builds the accepted payment requirements for a call and matches proofs against them
"""

import logging
from typing import Any, Dict, List, Optional

from web3 import Web3

from .errors import ConfigurationError, FacilitatorError
from .facilitator import FacilitatorClient
from .models import (
    PaymentPayload,
    PaymentRequirements,
    ToolPaymentRequirements,
)
from .networks import EVM, SVM, network_family, process_price_to_atomic_amount
from .security import AddressValidator

logger = logging.getLogger(__name__)

EXACT_SCHEME = 'exact'
DEFAULT_MAX_TIMEOUT_SECONDS = 60


def _output_schema(requirement: ToolPaymentRequirements, method: str) -> Dict[str, Any]:
    options = requirement.config
    discoverable = options.discoverable if options.discoverable is not None else True
    return {
        'input': {
            'type': 'http',
            'method': method.upper(),
            'discoverable': discoverable,
            **(options.input_schema or {}),
        },
        'output': options.output_schema,
    }


async def _fee_payer(facilitator: FacilitatorClient, network: str) -> str:
    try:
        kinds = await facilitator.supported()
    except FacilitatorError as e:
        raise ConfigurationError(f"Could not load supported payment kinds: {e}") from e

    for kind in kinds:
        if kind.get('network') == network and kind.get('scheme') == EXACT_SCHEME:
            fee_payer = (kind.get('extra') or {}).get('feePayer')
            if fee_payer:
                return fee_payer
            break

    raise ConfigurationError(f"The facilitator did not provide a fee payer for network: {network}.")


async def build_payment_requirements(
    requirement: ToolPaymentRequirements,
    pay_to: str,
    resource_url: str,
    method: str,
    facilitator: Optional[FacilitatorClient] = None
) -> List[PaymentRequirements]:
    """
    Build the challenge for one call

    Only the requirement's own network is offered, as a single variant of
    its network family.

    Args:
        requirement: Resolved tool requirement
        pay_to: Effective receiving address
        resource_url: URL of the gated resource
        method: HTTP method of the call
        facilitator: Needed to discover the fee payer on SVM networks

    Returns:
        List with one PaymentRequirements variant

    Raises:
        ConfigurationError: unsupported network, invalid price or address
    """
    network = requirement.network
    family = network_family(network)
    atomic = process_price_to_atomic_amount(requirement.price, network)
    options = requirement.config

    common = dict(
        scheme=EXACT_SCHEME,
        network=network,
        max_amount_required=atomic.max_amount_required,
        resource=options.resource or resource_url,
        description=options.description or '',
        mime_type=options.mime_type or '',
        max_timeout_seconds=options.max_timeout_seconds or DEFAULT_MAX_TIMEOUT_SECONDS,
        output_schema=_output_schema(requirement, method),
    )

    if family == EVM:
        return [
            PaymentRequirements(
                pay_to=AddressValidator.normalize_address(pay_to, network),
                asset=Web3.to_checksum_address(atomic.asset.address),
                extra=atomic.asset.eip712,
                **common,
            )
        ]

    if family == SVM:
        if facilitator is None:
            raise ConfigurationError(f"A facilitator is required for network: {network}")
        fee_payer = await _fee_payer(facilitator, network)
        return [
            PaymentRequirements(
                pay_to=AddressValidator.normalize_address(pay_to, network),
                asset=atomic.asset.address,
                extra={'feePayer': fee_payer},
                **common,
            )
        ]

    raise ConfigurationError(f"Unsupported network: {network}")


def find_matching_payment_requirements(
    accepts: List[PaymentRequirements],
    payment: PaymentPayload
) -> Optional[PaymentRequirements]:
    """Pick the variant with the same scheme and network as the payment"""
    for requirements in accepts:
        if requirements.scheme == payment.scheme and requirements.network == payment.network:
            return requirements
    return None


def is_web_browser(headers) -> bool:
    """Browsers get the HTML paywall instead of a JSON challenge"""
    accept = headers.get('accept') or ''
    user_agent = headers.get('user-agent') or ''
    return 'text/html' in accept and 'Mozilla' in user_agent


def resource_url_for(request) -> str:
    """protocol://host/path of the call, without query string"""
    host = request.headers.get('host') or request.url.netloc
    return f"{request.url.scheme}://{host}{request.url.path}"
