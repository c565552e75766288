"""
Helpers for x402 payment layer tests
"""

from typing import List

import httpx
from pydantic import BaseModel
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from mcpx.server import McpXServer
from mcpx.x402.cache import RequirementCache
from mcpx.x402.config import X402Config
from mcpx.x402.encoding import encode_payment
from mcpx.x402.middleware import X402Middleware
from mcpx.x402.models import PaymentPayload
from mcpx.x402.settlement import SettlementTracker

PAY_TO = '0xabcdefabcdefabcdefabcdefabcdefabcdefabcd'
PAYER = '0x2222222222222222222222222222222222222222'
FACILITATOR_URL = 'https://facilitator.test'


def make_config(**overrides) -> X402Config:
    values = dict(
        default_pay_to=None,
        default_facilitator_url=FACILITATOR_URL,
        tool_pay_to={},
        tool_facilitators={},
        requirement_cache_ttl=60.0,
        facilitator_timeout=5.0,
        settlement_history=100,
        paywall_app_name=None,
        paywall_app_logo=None,
        paywall_cdp_client_key=None,
        enabled=True,
    )
    values.update(overrides)
    return X402Config(**values)


def make_payment_header(network: str = 'base', scheme: str = 'exact') -> str:
    payment = PaymentPayload(
        x402_version=1,
        scheme=scheme,
        network=network,
        payload={
            'signature': '0xsignature',
            'authorization': {'from': PAYER, 'to': PAY_TO, 'value': '1000'},
        },
    )
    return encode_payment(payment)


def tool_call(name: str, arguments=None, request_id: int = 1) -> dict:
    return {
        'jsonrpc': '2.0',
        'id': request_id,
        'method': 'tools/call',
        'params': {'name': name, 'arguments': arguments or {}},
    }


class EchoInput(BaseModel):
    message: str


class Harness:
    """Tool server behind X402Middleware with a mocked facilitator"""

    def __init__(self, server: McpXServer, facilitator, tracker: SettlementTracker,
                 cache: RequirementCache, executed: List[str], **middleware_options):
        self.server = server
        self.facilitator = facilitator
        self.tracker = tracker
        self.cache = cache
        self.executed = executed

        async def rpc(request: Request):
            reply = await server.handle_message(await request.json())
            return JSONResponse(reply)

        config = middleware_options.pop('config', None) or make_config()
        app = Starlette(routes=[Route('/mcp', rpc, methods=['POST'])])
        app.add_middleware(
            X402Middleware,
            server=server,
            facilitator_factory=lambda config: facilitator,
            settlement_tracker=tracker,
            cache=cache,
            config=config,
            **middleware_options
        )
        self.app = app

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=self.app), base_url='http://testserver')

    def register_echo(self, name: str, payment=None):
        def handler(args: EchoInput):
            self.executed.append(name)
            return f"{name}: {args.message}"

        self.server.register_tool(name, handler, payment=payment, input_model=EchoInput)
