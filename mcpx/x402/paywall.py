"""
mcpx Paywall
Human-facing 402 page for browser callers
"""

import html
import json
from dataclasses import dataclass
from typing import List, Optional

from .models import PaymentRequirements


@dataclass(frozen=True)
class PaywallConfig:
    """Branding for the payment page"""
    app_name: Optional[str] = None
    app_logo: Optional[str] = None
    cdp_client_key: Optional[str] = None
    session_token_endpoint: Optional[str] = None


_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Payment Required - {title}</title>
<style>
body {{ font-family: system-ui, sans-serif; background: #f5f5f7; margin: 0; }}
main {{ max-width: 28rem; margin: 4rem auto; background: #fff; border-radius: 12px; padding: 2rem; }}
.amount {{ font-size: 2rem; font-weight: 600; }}
.network {{ color: #666; }}
.testnet {{ color: #b45309; font-size: .875rem; }}
img.logo {{ max-height: 48px; }}
</style>
</head>
<body>
<main>
{logo}
<h1>Payment Required</h1>
<p>{description}</p>
<p class="amount">{amount}</p>
<p class="network">Pay with USDC on {network}</p>
{testnet}
<p>This resource requires an x402 payment. Use an x402-enabled wallet or client
and retry the request with an <code>X-PAYMENT</code> header.</p>
</main>
<script>
window.x402 = {config};
</script>
</body>
</html>
"""


def _script_json(data) -> str:
    # Keep embedded JSON from closing the script element
    return json.dumps(data).replace('<', '\\u003c').replace('>', '\\u003e').replace('&', '\\u0026')


def get_paywall_html(
    amount: Optional[float],
    payment_requirements: List[PaymentRequirements],
    current_url: str,
    testnet: bool,
    paywall: Optional[PaywallConfig] = None
) -> str:
    """
    Render the payment page

    Args:
        amount: USD amount to display, None when the price is not a money value
        payment_requirements: Requirements offered in the challenge
        current_url: URL the browser requested
        testnet: Whether the network is a test network
        paywall: Optional branding

    Returns:
        HTML document
    """
    paywall = paywall or PaywallConfig()
    first = payment_requirements[0] if payment_requirements else None
    accepts = [r.to_wire() for r in payment_requirements]

    config = {
        'amount': amount,
        'paymentRequirements': accepts,
        'currentUrl': current_url,
        'testnet': testnet,
        'cdpClientKey': paywall.cdp_client_key,
        'appName': paywall.app_name,
        'appLogo': paywall.app_logo,
        'sessionTokenEndpoint': paywall.session_token_endpoint,
    }

    logo = ''
    if paywall.app_logo:
        logo = f'<img class="logo" src="{html.escape(paywall.app_logo)}" alt="">'

    return _PAGE.format(
        title=html.escape(paywall.app_name or 'x402'),
        logo=logo,
        description=html.escape((first.description if first else '') or current_url),
        amount=f"${amount:,.4f}".rstrip('0').rstrip('.') if amount is not None else 'Price unavailable',
        network=html.escape(first.network if first else 'unknown network'),
        testnet='<p class="testnet">Testnet payment</p>' if testnet else '',
        config=_script_json(config),
    )
