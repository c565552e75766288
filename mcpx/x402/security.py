"""
Security hardening for mcpx x402 payments
Receiving address validation and production configuration checks
"""

import os
import re
import logging
from typing import Optional

from solders.pubkey import Pubkey
from web3 import Web3

from .errors import ConfigurationError
from .networks import SVM, network_family

logger = logging.getLogger(__name__)

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'


# =============================================================================
# ADDRESS VALIDATION
# =============================================================================

class AddressValidator:
    """Blockchain address validation"""

    @staticmethod
    def validate_evm_address(address: str) -> bool:
        """Validate Ethereum/EVM address"""
        if not address.startswith('0x'):
            return False
        if len(address) != 42:
            return False
        if not re.match(r'^0x[a-fA-F0-9]{40}$', address):
            return False
        return True

    @staticmethod
    def validate_solana_address(address: str) -> bool:
        """Validate Solana address"""
        if len(address) < 32 or len(address) > 44:
            return False
        if not re.match(r'^[1-9A-HJ-NP-Za-km-z]{32,44}$', address):
            return False
        try:
            Pubkey.from_string(address)
        except ValueError:
            return False
        return True

    @staticmethod
    def validate_address(address: str, network: str) -> bool:
        """Validate address for the family of network"""
        if network_family(network) == SVM:
            return AddressValidator.validate_solana_address(address)
        return AddressValidator.validate_evm_address(address)

    @staticmethod
    def normalize_address(address: str, network: str) -> str:
        """
        Strip whitespace and checksum EVM addresses.

        Raises:
            ConfigurationError: address is not valid for the network family
        """
        address = address.strip()
        if not AddressValidator.validate_address(address, network):
            raise ConfigurationError(f"Invalid address for network {network}: {address}")

        if network_family(network) == SVM:
            return address
        return Web3.to_checksum_address(address)


# =============================================================================
# RESPONSE HEADERS
# =============================================================================

PAYWALL_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}


# =============================================================================
# ENVIRONMENT CHECKS
# =============================================================================

def is_development_environment() -> bool:
    """Check if running in development mode"""
    return os.getenv('ENVIRONMENT', 'production').lower() in ['development', 'dev', 'local']


def validate_production_config(default_pay_to: Optional[str]) -> None:
    """Warn loudly when payments would be sent nowhere useful outside development"""
    if is_development_environment():
        return

    if not default_pay_to:
        logger.warning(
            "No default payTo address configured: gated tools without their own "
            "payTo will run without payment enforcement"
        )
    elif default_pay_to.lower() == ZERO_ADDRESS:
        logger.critical("SECURITY: default payTo is the zero address, payments would be burned")
    else:
        logger.info("Production payment configuration validated")
