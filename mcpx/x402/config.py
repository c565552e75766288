"""
mcpx x402 Configuration

Loads configuration from environment variables for the payment layer.
"""

import os
import logging
from typing import Dict, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = 'https://x402.org/facilitator'


@dataclass
class X402Config:
    """x402 Payment Layer Configuration"""

    # Receiving address and facilitator used when a tool does not name its own
    default_pay_to: Optional[str]
    default_facilitator_url: str

    # Per-tool overrides, tool name -> value
    tool_pay_to: Dict[str, str]
    tool_facilitators: Dict[str, str]

    # Requirement cache
    requirement_cache_ttl: float

    # Facilitator HTTP client
    facilitator_timeout: float

    # Background settlement records kept for inspection
    settlement_history: int

    # Paywall branding
    paywall_app_name: Optional[str]
    paywall_app_logo: Optional[str]
    paywall_cdp_client_key: Optional[str]

    # Feature flags
    enabled: bool


def parse_tool_overrides(overrides_str: str) -> Dict[str, str]:
    """
    Parse per-tool overrides from comma-separated string.
    Format: premium_echo:0xabc...,secure_echo:https://facilitator.example
    """
    overrides = {}
    if not overrides_str:
        return overrides

    for item in overrides_str.split(','):
        try:
            tool, value = item.split(':', 1)
        except ValueError:
            logger.warning(f"Invalid tool override format: {item}")
            continue
        if not tool.strip() or not value.strip():
            logger.warning(f"Invalid tool override format: {item}")
            continue
        overrides[tool.strip()] = value.strip()

    return overrides


def load_x402_config() -> X402Config:
    """Load x402 configuration from environment variables"""

    return X402Config(
        default_pay_to=os.getenv('X402_PAY_TO_ADDRESS') or None,
        default_facilitator_url=os.getenv('X402_FACILITATOR_URL', DEFAULT_FACILITATOR_URL),

        tool_pay_to=parse_tool_overrides(os.getenv('X402_TOOL_PAY_TO', '')),
        tool_facilitators=parse_tool_overrides(os.getenv('X402_TOOL_FACILITATORS', '')),

        requirement_cache_ttl=float(os.getenv('X402_REQUIREMENT_CACHE_TTL', '60')),
        facilitator_timeout=float(os.getenv('X402_FACILITATOR_TIMEOUT', '30')),
        settlement_history=int(os.getenv('X402_SETTLEMENT_HISTORY', '100')),

        paywall_app_name=os.getenv('X402_PAYWALL_APP_NAME') or None,
        paywall_app_logo=os.getenv('X402_PAYWALL_APP_LOGO') or None,
        paywall_cdp_client_key=os.getenv('X402_PAYWALL_CDP_CLIENT_KEY') or None,

        enabled=os.getenv('X402_ENABLED', 'true').lower() == 'true',
    )


# Global config instance
x402_config: Optional[X402Config] = None


def get_x402_config() -> X402Config:
    """Get the global x402 configuration instance"""
    global x402_config
    if x402_config is None:
        x402_config = load_x402_config()
    return x402_config


def reload_x402_config() -> X402Config:
    """Reload configuration from environment (useful for testing)"""
    global x402_config
    x402_config = load_x402_config()
    return x402_config
