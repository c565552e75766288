"""
mcpx x402 Networks
Supported network families, default USDC assets and price conversion
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from .errors import ConfigurationError, UnsupportedNetworkError
from .models import Price, TokenAmount, TokenAsset

EVM = 'evm'
SVM = 'svm'

SUPPORTED_EVM_NETWORKS: List[str] = [
    'base-sepolia', 'base',
    'avalanche-fuji', 'avalanche',
    'iotex',
    'sei', 'sei-testnet',
    'polygon', 'polygon-amoy',
    'peaq',
]

SUPPORTED_SVM_NETWORKS: List[str] = ['solana-devnet', 'solana']

TESTNETS = {'base-sepolia', 'avalanche-fuji', 'sei-testnet', 'polygon-amoy', 'solana-devnet'}

USDC_DECIMALS = 6

# Default USDC contract per network, with the EIP-712 domain for EVM chains
DEFAULT_USDC_ASSETS: Dict[str, TokenAsset] = {
    'base-sepolia': TokenAsset(
        address='0x036CbD53842c5426634e7929541eC2318f3dCF7e',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USDC', 'version': '2'},
    ),
    'base': TokenAsset(
        address='0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USD Coin', 'version': '2'},
    ),
    'avalanche-fuji': TokenAsset(
        address='0x5425890298aed601595a70AB815c96711a31Bc65',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USD Coin', 'version': '2'},
    ),
    'avalanche': TokenAsset(
        address='0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USD Coin', 'version': '2'},
    ),
    'iotex': TokenAsset(
        address='0xcdF79194c6c285077a58Da47641d4dBe51F63542',
        decimals=USDC_DECIMALS,
        eip712={'name': 'Bridged USDC', 'version': '2'},
    ),
    'sei': TokenAsset(
        address='0xe15fC38F6D8c56aF07bbCBe3BAf5708A2Bf42392',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USDC', 'version': '2'},
    ),
    'sei-testnet': TokenAsset(
        address='0x4fCF1784B31630811181f670Aea7A7bEF803eaED',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USDC', 'version': '2'},
    ),
    'polygon': TokenAsset(
        address='0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USD Coin', 'version': '2'},
    ),
    'polygon-amoy': TokenAsset(
        address='0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USDC', 'version': '2'},
    ),
    'peaq': TokenAsset(
        address='0xbbA60da06c2c5424f03f7434542280FCAd453d10',
        decimals=USDC_DECIMALS,
        eip712={'name': 'USDC', 'version': '2'},
    ),
    'solana-devnet': TokenAsset(
        address='4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU',
        decimals=USDC_DECIMALS,
    ),
    'solana': TokenAsset(
        address='EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v',
        decimals=USDC_DECIMALS,
    ),
}

MIN_MONEY = Decimal('0.0001')
MAX_MONEY = Decimal('999999999')
ATOMIC_AMOUNT_PATTERN = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class AtomicAmount:
    """Price converted to the smallest unit of its asset"""
    max_amount_required: str
    asset: TokenAsset


def network_family(network: str) -> str:
    """Return 'evm' or 'svm' for a network, raising for anything else"""
    if network in SUPPORTED_EVM_NETWORKS:
        return EVM
    if network in SUPPORTED_SVM_NETWORKS:
        return SVM
    raise UnsupportedNetworkError(f"Unsupported network: {network}")


def get_default_asset(network: str) -> TokenAsset:
    try:
        return DEFAULT_USDC_ASSETS[network]
    except KeyError as exc:
        raise UnsupportedNetworkError(f"No default asset configured for network {network}") from exc


def parse_money(money) -> Decimal:
    """
    Parse a USD money value such as '$0.001', '1,000.50' or 0.01.

    Raises:
        ConfigurationError: value is not a number or out of range
    """
    if isinstance(money, bool):
        raise ConfigurationError(f"Invalid money type: {type(money).__name__}")
    if isinstance(money, (int, float, Decimal)):
        amount = Decimal(str(money))
    elif isinstance(money, str):
        clean = money.replace('$', '').replace(',', '').strip()
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ConfigurationError(f"Invalid money format: {money}") from exc
    else:
        raise ConfigurationError(f"Invalid money type: {type(money).__name__}")

    if not amount.is_finite() or amount < MIN_MONEY or amount > MAX_MONEY:
        raise ConfigurationError(
            f"Invalid price {money}: must be between {MIN_MONEY} and {MAX_MONEY}"
        )
    return amount


def parse_atomic_amount(amount: str) -> str:
    """
    Validate an amount given in atomic token units

    Raises:
        ConfigurationError: amount is not a non-negative integer string
    """
    if not isinstance(amount, str) or not ATOMIC_AMOUNT_PATTERN.fullmatch(amount):
        raise ConfigurationError(f"Invalid token amount: {amount!r}")
    return amount


def process_price_to_atomic_amount(price: Price, network: str) -> AtomicAmount:
    """
    Convert a tool price into atomic units of the asset used on network

    Args:
        price: Money value (USD, paid in USDC) or an explicit TokenAmount
        network: Network the price will be paid on

    Returns:
        AtomicAmount with the amount string and the asset
    """
    if isinstance(price, TokenAmount):
        return AtomicAmount(max_amount_required=parse_atomic_amount(price.amount), asset=price.asset)

    amount = parse_money(price)
    asset = get_default_asset(network)
    atomic = int(amount * (Decimal(10) ** asset.decimals))
    return AtomicAmount(max_amount_required=str(atomic), asset=asset)


def display_amount(price: Price) -> Optional[float]:
    """Human readable USD amount for the paywall, None when unparseable"""
    if isinstance(price, TokenAmount):
        try:
            return float(Decimal(price.amount) / (Decimal(10) ** price.asset.decimals))
        except InvalidOperation:
            return None
    try:
        return float(parse_money(price))
    except ConfigurationError:
        return None


def is_testnet(network: str) -> bool:
    return network in TESTNETS
