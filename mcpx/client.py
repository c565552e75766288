#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx Client
httpx client for JSON-RPC tool servers that answer paid calls with HTTP 402
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .server import JSONRPC_VERSION, PROTOCOL_VERSION
from .x402.encoding import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    SESSION_HEADER,
    decode_payment_response,
)
from .x402.models import PaymentRequirements, SettleResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY = 2.0


class McpError(Exception):
    """JSON-RPC error returned by the server"""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"MCP error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class PaymentRequiredError(Exception):
    """The server asked for payment and no payment could be provided"""

    def __init__(self, error: str, accepts: List[PaymentRequirements], payer: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.accepts = accepts
        self.payer = payer


@dataclass
class PaymentSettlementInfo:
    """Decoded X-PAYMENT-RESPONSE of a paid call"""
    raw_header: str
    decoded: SettleResponse
    tool_name: Optional[str] = None


PaymentHandler = Callable[[List[PaymentRequirements]], Awaitable[Optional[str]]]
SettlementCallback = Callable[[PaymentSettlementInfo], Any]


class McpXClient:
    """
    Client for a payment-gated tool server

    Signing payments is left to payment_handler: it receives the accepted
    payment requirements of a 402 and returns an X-PAYMENT header value, or
    None to give up. The call is then retried once with that header.

    Usage:
        async with McpXClient("http://localhost:8000/mcp", payment_handler=sign) as client:
            result = await client.call_tool("premium_echo", {"message": "hi"})
    """

    def __init__(
        self,
        server_url: str,
        payment_handler: Optional[PaymentHandler] = None,
        on_settlement: Optional[SettlementCallback] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        client_info: Optional[Dict[str, str]] = None,
        capabilities: Optional[Dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self.server_url = server_url
        self.payment_handler = payment_handler
        self.on_settlement = on_settlement
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client_info = client_info or {'name': 'mcpx-client', 'version': '1.0.0'}
        self.capabilities = capabilities or {}

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=timeout)
        self.session_id: Optional[str] = None
        self.server_info: Optional[Dict[str, Any]] = None
        self._ids = itertools.count(1)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> Dict[str, Any]:
        """Initialize a session, retrying while the server is unavailable"""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._initialize()
            except (httpx.HTTPError, McpError) as e:
                last_error = e
                logger.warning(f"Connect attempt {attempt}/{self.max_retries} to {self.server_url} failed: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay)

        raise ConnectionError(f"Failed to connect to MCP server at {self.server_url}") from last_error

    async def _initialize(self) -> Dict[str, Any]:
        self.session_id = None
        result = await self._request('initialize', {
            'protocolVersion': PROTOCOL_VERSION,
            'capabilities': self.capabilities,
            'clientInfo': self.client_info,
        })
        self.server_info = result.get('serverInfo')
        await self._notify('notifications/initialized')
        logger.info(f"Connected to {self.server_url} (session {self.session_id})")
        return result

    async def close(self) -> None:
        if self.session_id:
            try:
                await self.client.delete(self.server_url, headers={SESSION_HEADER: self.session_id})
            except httpx.HTTPError as e:
                logger.debug(f"Session close failed: {e}")
            self.session_id = None
        if self._owns_client:
            await self.client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json, text/event-stream',
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        if extra:
            headers.update(extra)
        return headers

    async def _post(self, message: Dict[str, Any], extra_headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        response = await self.client.post(self.server_url, json=message, headers=self._headers(extra_headers))
        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self.session_id = session_id
        return response

    @staticmethod
    def _result(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise McpError(-32700, f"Invalid JSON response (HTTP {response.status_code})")

        if 'error' in data:
            error = data['error']
            raise McpError(error.get('code', -32603), error.get('message', ''), error.get('data'))
        response.raise_for_status()
        return data.get('result', {})

    def _message(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        message = {'jsonrpc': JSONRPC_VERSION, 'id': next(self._ids), 'method': method}
        if params is not None:
            message['params'] = params
        return message

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._result(await self._post(self._message(method, params)))

    async def _notify(self, method: str) -> None:
        response = await self._post({'jsonrpc': JSONRPC_VERSION, 'method': method})
        response.raise_for_status()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def list_tools(self) -> List[Dict[str, Any]]:
        result = await self._request('tools/list')
        return result.get('tools', [])

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Call a tool, paying for it when the server answers 402

        Raises:
            PaymentRequiredError: payment required and not provided or not accepted
            McpError: JSON-RPC error from the server
        """
        message = self._message('tools/call', {'name': name, 'arguments': arguments or {}})
        response = await self._post(message)

        if response.status_code == 402:
            accepts, error, payer = self._payment_required(response)
            if self.payment_handler is None:
                raise PaymentRequiredError(error, accepts, payer)

            payment_header = await self.payment_handler(accepts)
            if not payment_header:
                raise PaymentRequiredError(error, accepts, payer)

            logger.info(f"💳 Paying for tool '{name}'")
            response = await self._post(message, {PAYMENT_HEADER: payment_header})
            if response.status_code == 402:
                accepts, error, payer = self._payment_required(response)
                raise PaymentRequiredError(error, accepts, payer)

        await self._report_settlement(response, name)
        return self._result(response)

    @staticmethod
    def _payment_required(response: httpx.Response):
        body = response.json()
        accepts = [PaymentRequirements.model_validate(a) for a in body.get('accepts', [])]
        return accepts, body.get('error', 'Payment required'), body.get('payer')

    async def _report_settlement(self, response: httpx.Response, tool_name: str) -> None:
        header = response.headers.get(PAYMENT_RESPONSE_HEADER)
        if not header or self.on_settlement is None:
            return

        try:
            decoded = decode_payment_response(header)
        except ValueError as e:
            logger.warning(f"Failed to decode X-PAYMENT-RESPONSE header: {e}")
            return

        result = self.on_settlement(PaymentSettlementInfo(raw_header=header, decoded=decoded, tool_name=tool_name))
        if inspect.isawaitable(result):
            await result
