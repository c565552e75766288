#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx x402 Payment Middleware
ASGI middleware answering gated JSON-RPC tools/call requests with HTTP 402
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .cache import RequirementCache, make_cache_key
from .capture import ResponseCapture
from .challenge import (
    build_payment_requirements,
    find_matching_payment_requirements,
    is_web_browser,
    resource_url_for,
)
from .config import X402Config, get_x402_config
from .encoding import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    SESSION_HEADER,
    decode_payment,
    settle_response_header,
)
from .errors import NoMatchingRequirement, PaymentRejected, SettlementFailed, VerificationFailed
from .facilitator import FacilitatorClient, get_facilitator
from .models import (
    DynamicPaymentContext,
    FacilitatorConfig,
    PaymentMode,
    PaymentPayload,
    PaymentRequiredResponse,
    PaymentRequirements,
    SettleResponse,
    ToolPaymentRequirements,
    VerifyResponse,
    resolve_payment_mode,
)
from .monitoring import (
    challenges_issued_total,
    passthrough_total,
    payments_accepted_total,
    payments_rejected_total,
    settlements_total,
)
from .networks import display_amount, is_testnet
from .paywall import PaywallConfig, get_paywall_html
from .resolver import RequirementResolver
from .security import PAYWALL_HEADERS
from .settlement import SettlementTracker

logger = logging.getLogger(__name__)

MISSING_PAYMENT_ERROR = 'X-PAYMENT header is required'
NO_MATCH_ERROR = 'Unable to find matching payment requirements'
INTERNAL_ERROR_CODE = -32603


async def _read_body(receive: Receive) -> bytes:
    """Read the whole request body"""
    chunks: List[bytes] = []
    while True:
        message = await receive()
        if message['type'] != 'http.request':
            break
        chunks.append(message.get('body', b''))
        if not message.get('more_body', False):
            break

    return b''.join(chunks)


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    """Receive channel that yields the buffered body once, then defers to the real one"""
    replayed = False

    async def replay_receive():
        nonlocal replayed
        if not replayed:
            replayed = True
            return {'type': 'http.request', 'body': body, 'more_body': False}
        return await receive()

    return replay_receive


def _parse_tool_call(raw: bytes) -> Optional[Tuple[Dict[str, Any], str]]:
    """Return (body, tool name) for a JSON-RPC tools/call, None for anything else"""
    if not raw:
        return None
    try:
        body = json.loads(raw)
    except ValueError:
        return None

    if not isinstance(body, dict) or body.get('method') != 'tools/call':
        return None
    params = body.get('params')
    if not isinstance(params, dict) or not isinstance(params.get('name'), str):
        return None
    return body, params['name']


class _Enforcement:
    """Everything needed to demand and check payment for one call"""

    def __init__(
        self,
        tool_name: str,
        cache_key: str,
        requirement: ToolPaymentRequirements,
        accepts: List[PaymentRequirements],
        facilitator: FacilitatorClient
    ):
        self.tool_name = tool_name
        self.cache_key = cache_key
        self.requirement = requirement
        self.accepts = accepts
        self.facilitator = facilitator
        self.mode = resolve_payment_mode(requirement)


class X402Middleware:
    """
    Middleware for paid MCP tool calls

    This middleware:
    1. Picks out POSTed JSON-RPC tools/call requests for tools with a payment policy
    2. Resolves the requirement for the call (cached per session and body)
    3. Returns 402 with the accepted payment requirements when X-PAYMENT is absent
    4. Verifies the payment with the facilitator and settles it before or
       after running the tool, depending on the payment mode

    Every other request is forwarded untouched.
    """

    def __init__(
        self,
        app: ASGIApp,
        server,
        pay_to: Optional[str] = None,
        facilitator: Optional[FacilitatorConfig] = None,
        paywall: Optional[PaywallConfig] = None,
        cache: Optional[RequirementCache] = None,
        settlement_tracker: Optional[SettlementTracker] = None,
        facilitator_factory=None,
        config: Optional[X402Config] = None,
        paths: Optional[Sequence[str]] = None
    ):
        """
        Args:
            app: Downstream ASGI application
            server: Tool server owning the payment policy registry
            pay_to: Receiving address used when neither tool nor server names one
            facilitator: Facilitator used when neither tool nor server names one
            paywall: Branding for the browser paywall
            cache: Requirement cache, created from config when omitted
            settlement_tracker: Tracker for settlements that run after the tool
            facilitator_factory: Builds a FacilitatorClient from a FacilitatorConfig
            config: Payment layer configuration
            paths: Only inspect requests to these paths, all paths when omitted
        """
        self.app = app
        self.server = server
        self.registry = server.payments
        self.resolver = RequirementResolver(self.registry)
        self.config = config or get_x402_config()

        self.pay_to = pay_to
        self.facilitator = facilitator or FacilitatorConfig(url=self.config.default_facilitator_url)
        self.paywall = paywall or PaywallConfig(
            app_name=self.config.paywall_app_name,
            app_logo=self.config.paywall_app_logo,
            cdp_client_key=self.config.paywall_cdp_client_key,
        )
        self.cache = cache or RequirementCache(ttl=self.config.requirement_cache_ttl)
        self.settlements = settlement_tracker or SettlementTracker(self.config.settlement_history)
        self.facilitator_factory = facilitator_factory or get_facilitator
        self.paths = set(paths) if paths else None

        logger.info(f"x402 Middleware initialized, paid tools: {self.registry.tools()}")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope['type'] != 'http' or scope['method'] != 'POST' or not self.config.enabled:
            await self.app(scope, receive, send)
            return
        if self.paths is not None and scope['path'] not in self.paths:
            await self.app(scope, receive, send)
            return

        raw_body = await _read_body(receive)
        downstream = _replay_receive(raw_body, receive)
        call = _parse_tool_call(raw_body)
        if call is None:
            await self.app(scope, downstream, send)
            return

        body, tool_name = call
        if not self.registry.requires_payment(tool_name):
            await self.app(scope, downstream, send)
            return

        request = Request(scope, _replay_receive(raw_body, receive))
        await self.dispatch(request, body, tool_name, downstream, send)

    async def dispatch(
        self,
        request: Request,
        body: Dict[str, Any],
        tool_name: str,
        receive: Receive,
        send: Send
    ) -> None:
        """
        Run the payment checks for one gated tool call

        request sees its own copy of the body so resolvers may read it;
        receive is the channel handed to the downstream app.
        """
        scope = request.scope
        cache_key = make_cache_key(request.headers.get(SESSION_HEADER), body)

        try:
            enforcement = await self._prepare(request, body, tool_name, cache_key)
        except Exception as e:
            logger.error(f"Error in x402 middleware for '{tool_name}': {e}", exc_info=True)
            self.cache.consume(cache_key)
            response = JSONResponse(
                {
                    'jsonrpc': '2.0',
                    'error': {'code': INTERNAL_ERROR_CODE, 'message': 'Internal server error'},
                    'id': body.get('id'),
                },
                status_code=500
            )
            await response(scope, receive, send)
            return

        if enforcement is None:
            self.cache.consume(cache_key)
            await self.app(scope, receive, send)
            return

        payment_header = request.headers.get(PAYMENT_HEADER)
        if not payment_header:
            await self._challenge(request, enforcement, send)
            return

        capture = ResponseCapture()
        try:
            payment = decode_payment(payment_header)
            selected = find_matching_payment_requirements(enforcement.accepts, payment)
            if selected is None:
                raise NoMatchingRequirement(NO_MATCH_ERROR)

            verification = await self._verify(enforcement, payment, selected)

            if enforcement.mode == PaymentMode.BEFORE_EXECUTION:
                await self._settle_before_execution(enforcement, payment, selected, capture)
        except PaymentRejected as rejection:
            receipt = capture.injected_headers.get(PAYMENT_RESPONSE_HEADER.lower())
            capture.discard()
            await self._reject(request, enforcement, rejection, send, receipt)
            return

        if enforcement.mode == PaymentMode.AFTER_EXECUTION:
            self.settlements.start(
                enforcement.facilitator.settle(payment, selected),
                tool_name=enforcement.tool_name,
                network=selected.network,
                payer=verification.payer,
            )

        payments_accepted_total.labels(tool=tool_name, mode=enforcement.mode.value).inc()
        self.cache.consume(cache_key)
        await self.app(scope, receive, capture.send)
        await capture.replay(send)

    async def _prepare(
        self,
        request: Request,
        body: Dict[str, Any],
        tool_name: str,
        cache_key: str
    ) -> Optional[_Enforcement]:
        """Resolve requirement, receiving address and challenge; None means forward unpaid"""
        requirement = self.cache.get(cache_key)
        if requirement is None:
            context = DynamicPaymentContext(tool_name, request.headers, body, request)
            requirement = await self.resolver.resolve(tool_name, context)
            if requirement is None:
                passthrough_total.labels(reason='waived').inc()
                return None

            policy = self.registry.policy_for(tool_name)
            if policy is not None and policy.kind == 'dynamic':
                self.cache.set(cache_key, requirement)

        pay_to = self.registry.pay_to_for(tool_name, requirement, self.pay_to)
        if not pay_to:
            logger.warning(f"⚠️  No payTo address configured for tool '{tool_name}', skipping payment")
            passthrough_total.labels(reason='no_pay_to').inc()
            return None

        facilitator_config = self.registry.facilitator_for(tool_name, requirement, self.facilitator)
        facilitator = self.facilitator_factory(facilitator_config)

        accepts = await build_payment_requirements(
            requirement,
            pay_to,
            resource_url_for(request),
            request.method,
            facilitator
        )
        return _Enforcement(tool_name, cache_key, requirement, accepts, facilitator)

    async def _verify(
        self,
        enforcement: _Enforcement,
        payment: PaymentPayload,
        selected: PaymentRequirements
    ) -> VerifyResponse:
        try:
            response = await enforcement.facilitator.verify(payment, selected)
        except Exception as e:
            logger.error(f"Payment verification error for '{enforcement.tool_name}': {e}")
            raise VerificationFailed(str(e)) from e

        logger.info(f"🔍 verify() response: {response.to_wire()}")
        if not response.is_valid:
            raise VerificationFailed(response.invalid_reason or 'Payment verification failed', payer=response.payer)
        return response

    async def _settle_before_execution(
        self,
        enforcement: _Enforcement,
        payment: PaymentPayload,
        selected: PaymentRequirements,
        capture: ResponseCapture
    ) -> Optional[SettleResponse]:
        mode = PaymentMode.BEFORE_EXECUTION.value
        try:
            settlement = await enforcement.facilitator.settle(payment, selected)
        except Exception as e:
            settlements_total.labels(mode=mode, status='error').inc()
            logger.error(f"❌ Settlement error for '{enforcement.tool_name}': {e}", exc_info=True)
            if capture.started:
                return None
            raise SettlementFailed(str(e)) from e

        capture.set_header(PAYMENT_RESPONSE_HEADER, settle_response_header(settlement))
        logger.info(f"🧾 X-PAYMENT-RESPONSE (Settlement): {settlement.to_wire()}")

        if not settlement.success:
            settlements_total.labels(mode=mode, status='failed').inc()
            raise SettlementFailed(settlement.error_reason or 'Settlement failed', payer=settlement.payer)

        settlements_total.labels(mode=mode, status='success').inc()
        return settlement

    async def _challenge(self, request: Request, enforcement: _Enforcement, send: Send) -> None:
        """402 for a call that carries no payment at all"""
        requirement = enforcement.requirement

        if is_web_browser(request.headers):
            challenges_issued_total.labels(tool=enforcement.tool_name, client='browser').inc()
            html = requirement.config.custom_paywall_html
            if not html:
                current_url = request.url.path
                if request.url.query:
                    current_url = f"{current_url}?{request.url.query}"
                html = get_paywall_html(
                    display_amount(requirement.price),
                    enforcement.accepts,
                    current_url,
                    is_testnet(requirement.network),
                    self.paywall
                )
            response = HTMLResponse(html, status_code=402, headers=PAYWALL_HEADERS)
        else:
            challenges_issued_total.labels(tool=enforcement.tool_name, client='agent').inc()
            response = JSONResponse(
                PaymentRequiredResponse(
                    error=MISSING_PAYMENT_ERROR,
                    accepts=[r.to_wire() for r in enforcement.accepts],
                ).to_wire(),
                status_code=402
            )

        logger.info(f"💳 Payment required for '{enforcement.tool_name}'")
        await response(request.scope, request.receive, send)

    async def _reject(
        self,
        request: Request,
        enforcement: _Enforcement,
        rejection: PaymentRejected,
        send: Send,
        receipt: Optional[str] = None
    ) -> None:
        """402 for a payment that was submitted but not accepted"""
        payments_rejected_total.labels(
            tool=enforcement.tool_name,
            reason=type(rejection).__name__
        ).inc()
        logger.warning(f"Payment rejected for '{enforcement.tool_name}': {rejection.reason}")

        headers = {PAYMENT_RESPONSE_HEADER: receipt} if receipt else None
        response = JSONResponse(
            PaymentRequiredResponse(
                error=rejection.reason,
                accepts=[r.to_wire() for r in enforcement.accepts],
                payer=rejection.payer,
            ).to_wire(),
            status_code=402,
            headers=headers
        )
        await response(request.scope, request.receive, send)
