"""
Shared fixtures for x402 payment layer tests
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mcpx.server import McpXServer
from mcpx.x402.cache import RequirementCache
from mcpx.x402.models import SettleResponse, VerifyResponse
from mcpx.x402.settlement import SettlementTracker

from x402_helpers import PAY_TO, PAYER, Harness, make_config


@pytest.fixture
def facilitator():
    """Facilitator double accepting every payment"""
    mock = MagicMock()
    mock.verify = AsyncMock(return_value=VerifyResponse(is_valid=True, payer=PAYER))
    mock.settle = AsyncMock(return_value=SettleResponse(
        success=True,
        payer=PAYER,
        transaction='0xtx123',
        network='base',
    ))
    mock.supported = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def server():
    return McpXServer('test-server', default_pay_to=PAY_TO, config=make_config())


@pytest.fixture
def tracker():
    return SettlementTracker(history_size=10)


@pytest.fixture
def cache():
    return RequirementCache(ttl=60)


@pytest.fixture
def harness(server, facilitator, tracker, cache):
    harness = Harness(server, facilitator, tracker, cache, executed=[])
    harness.register_echo('echo')
    return harness
