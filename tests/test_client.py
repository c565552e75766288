"""
Test cases for McpXClient against a scripted server
"""

import base64
import json

import httpx
import pytest

from mcpx.client import McpError, McpXClient, PaymentRequiredError

SERVER_URL = 'http://tools.test/mcp'

ACCEPTS = [{
    'scheme': 'exact',
    'network': 'base',
    'maxAmountRequired': '1000',
    'resource': SERVER_URL,
    'description': '',
    'mimeType': '',
    'payTo': '0x9999999999999999999999999999999999999999',
    'maxTimeoutSeconds': 60,
    'asset': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
    'extra': {'name': 'USD Coin', 'version': '2'},
}]

RECEIPT = base64.b64encode(json.dumps({
    'success': True,
    'transaction': '0xsettled',
    'network': 'base',
    'payer': '0xpayer',
}).encode()).decode()


class ScriptedServer:
    """Minimal MCP endpoint charging for every tools/call"""

    def __init__(self, receipt=RECEIPT, accept_payment=True, unavailable=0):
        self.receipt = receipt
        self.accept_payment = accept_payment
        self.unavailable = unavailable
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        headers = {'mcp-session-id': 'session-1'}

        if request.method == 'DELETE':
            return httpx.Response(200)

        message = json.loads(request.content)
        if message['method'] == 'initialize':
            if self.unavailable:
                self.unavailable -= 1
                return httpx.Response(503, text='starting up')
            return httpx.Response(200, headers=headers, json={
                'jsonrpc': '2.0', 'id': message['id'],
                'result': {'serverInfo': {'name': 'scripted', 'version': '1'}},
            })

        if 'id' not in message:
            return httpx.Response(202, headers=headers)

        if message['method'] == 'tools/list':
            return httpx.Response(200, headers=headers, json={
                'jsonrpc': '2.0', 'id': message['id'], 'result': {'tools': [{'name': 'paid'}]},
            })

        if message['method'] == 'tools/call':
            if message['params']['name'] == 'missing':
                return httpx.Response(200, headers=headers, json={
                    'jsonrpc': '2.0', 'id': message['id'],
                    'error': {'code': -32602, 'message': 'Tool missing not found'},
                })

            payment = request.headers.get('x-payment')
            if not payment or not self.accept_payment:
                error = 'X-PAYMENT header is required' if not payment else 'invalid_signature'
                return httpx.Response(402, json={'x402Version': 1, 'error': error, 'accepts': ACCEPTS})

            reply_headers = dict(headers)
            if self.receipt:
                reply_headers['X-PAYMENT-RESPONSE'] = self.receipt
            return httpx.Response(200, headers=reply_headers, json={
                'jsonrpc': '2.0', 'id': message['id'],
                'result': {'content': [{'type': 'text', 'text': 'paid result'}]},
            })

        raise AssertionError(f"Unexpected request {message}")


def make_client(server: ScriptedServer, **kwargs) -> McpXClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return McpXClient(SERVER_URL, http_client=http_client, retry_delay=0, **kwargs)


# =============================================================================
# CONNECTION
# =============================================================================

class TestConnection:
    """Session setup and teardown"""

    @pytest.mark.asyncio
    async def test_connect_and_close(self):
        server = ScriptedServer()
        client = make_client(server)

        result = await client.connect()
        assert result['serverInfo']['name'] == 'scripted'
        assert client.session_id == 'session-1'
        assert [json.loads(r.content)['method'] for r in server.requests] == [
            'initialize', 'notifications/initialized'
        ]
        assert server.requests[1].headers['mcp-session-id'] == 'session-1'

        await client.close()
        assert server.requests[-1].method == 'DELETE'
        assert client.session_id is None

    @pytest.mark.asyncio
    async def test_connect_retries(self):
        server = ScriptedServer(unavailable=2)
        client = make_client(server, max_retries=3)

        await client.connect()
        assert client.session_id == 'session-1'

    @pytest.mark.asyncio
    async def test_connect_gives_up(self):
        server = ScriptedServer(unavailable=5)
        client = make_client(server, max_retries=2)

        with pytest.raises(ConnectionError):
            await client.connect()
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_list_tools_and_json_rpc_error(self):
        async with make_client(ScriptedServer()) as client:
            assert await client.list_tools() == [{'name': 'paid'}]

            with pytest.raises(McpError) as exc_info:
                await client.call_tool('missing')
        assert exc_info.value.code == -32602


# =============================================================================
# PAYMENTS
# =============================================================================

class TestPayments:
    """402 handling and settlement reporting"""

    @pytest.mark.asyncio
    async def test_payment_required_without_handler(self):
        async with make_client(ScriptedServer()) as client:
            with pytest.raises(PaymentRequiredError) as exc_info:
                await client.call_tool('paid', {'q': 1})

        assert exc_info.value.error == 'X-PAYMENT header is required'
        assert exc_info.value.accepts[0].max_amount_required == '1000'
        assert exc_info.value.accepts[0].pay_to == ACCEPTS[0]['payTo']

    @pytest.mark.asyncio
    async def test_handler_declines(self):
        async def decline(accepts):
            return None

        async with make_client(ScriptedServer(), payment_handler=decline) as client:
            with pytest.raises(PaymentRequiredError):
                await client.call_tool('paid')

    @pytest.mark.asyncio
    async def test_paid_call_is_retried_with_header(self):
        server = ScriptedServer()
        offered = []
        settlements = []

        async def pay(accepts):
            offered.extend(accepts)
            return 'signed-payment'

        async def on_settlement(info):
            settlements.append(info)

        async with make_client(server, payment_handler=pay, on_settlement=on_settlement) as client:
            result = await client.call_tool('paid', {'q': 1})

        assert result['content'][0]['text'] == 'paid result'
        assert offered[0].network == 'base'

        calls = [r for r in server.requests if r.method == 'POST' and b'tools/call' in r.content]
        assert len(calls) == 2
        assert 'x-payment' not in calls[0].headers
        assert calls[1].headers['x-payment'] == 'signed-payment'
        assert json.loads(calls[0].content) == json.loads(calls[1].content)

        assert len(settlements) == 1
        assert settlements[0].tool_name == 'paid'
        assert settlements[0].raw_header == RECEIPT
        assert settlements[0].decoded.transaction == '0xsettled'

    @pytest.mark.asyncio
    async def test_rejected_payment(self):
        async def pay(accepts):
            return 'bad-payment'

        async with make_client(ScriptedServer(accept_payment=False), payment_handler=pay) as client:
            with pytest.raises(PaymentRequiredError) as exc_info:
                await client.call_tool('paid')
        assert exc_info.value.error == 'invalid_signature'

    @pytest.mark.asyncio
    async def test_undecodable_receipt_is_ignored(self):
        async def pay(accepts):
            return 'signed-payment'

        settlements = []
        server = ScriptedServer(receipt='%%%not-a-receipt%%%')
        async with make_client(server, payment_handler=pay, on_settlement=settlements.append) as client:
            result = await client.call_tool('paid')

        assert result['content'][0]['text'] == 'paid result'
        assert settlements == []
