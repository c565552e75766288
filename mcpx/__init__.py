"""
mcpx
JSON-RPC tool server and client with x402 pay-per-call payments
"""

from .client import McpXClient, PaymentRequiredError, PaymentSettlementInfo
from .server import McpXServer
from .sessions import McpRequestHandler, SessionRegistry

__version__ = "1.0.0"

__all__ = [
    "McpXClient",
    "PaymentRequiredError",
    "PaymentSettlementInfo",
    "McpXServer",
    "McpRequestHandler",
    "SessionRegistry",
]
