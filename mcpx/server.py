#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx Tool Server
JSON-RPC tool server with per-tool x402 payment definitions
"""

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from .x402.config import X402Config, get_x402_config
from .x402.models import (
    DynamicPaymentContext,
    FacilitatorConfig,
    ToolPaymentDefinition,
    ToolPaymentRequirements,
)
from .x402.registry import PaymentPolicy, PaymentPolicyRegistry
from .x402.resolver import RequirementResolver

logger = logging.getLogger(__name__)

JSONRPC_VERSION = '2.0'
PROTOCOL_VERSION = '2025-06-18'

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ToolResult = Union[Dict[str, Any], str, BaseModel]
ToolHandler = Callable[..., Union[ToolResult, Awaitable[ToolResult]]]


class JsonRpcError(Exception):
    """Error answered as a JSON-RPC error object"""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        error = {'code': self.code, 'message': self.message}
        if self.data is not None:
            error['data'] = self.data
        return error


def error_response(code: int, message: str, request_id: Any = None) -> Dict[str, Any]:
    return {
        'jsonrpc': JSONRPC_VERSION,
        'error': {'code': code, 'message': message},
        'id': request_id,
    }


@dataclass
class RegisteredTool:
    """A callable tool and the metadata advertised by tools/list"""
    name: str
    handler: ToolHandler
    title: Optional[str] = None
    description: Optional[str] = None
    input_model: Optional[Type[BaseModel]] = None
    annotations: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def definition(self) -> Dict[str, Any]:
        if self.input_model is not None:
            input_schema = self.input_model.model_json_schema()
        else:
            input_schema = {'type': 'object', 'properties': {}}

        tool = {'name': self.name, 'inputSchema': input_schema}
        if self.title:
            tool['title'] = self.title
        if self.description:
            tool['description'] = self.description
        if self.annotations:
            tool['annotations'] = self.annotations
        if self.meta:
            tool['_meta'] = self.meta
        return tool


def _text_result(text: str) -> Dict[str, Any]:
    return {'content': [{'type': 'text', 'text': text}]}


def _normalize_result(result: ToolResult) -> Dict[str, Any]:
    if isinstance(result, str):
        return _text_result(result)
    if isinstance(result, BaseModel):
        structured = result.model_dump(mode='json')
        return {**_text_result(json.dumps(structured)), 'structuredContent': structured}
    return result


class McpXServer:
    """
    Tool server with payment-aware tool registration

    Tools are registered with an optional payment definition: either a
    ToolPaymentRequirements (static price) or a callable computing one per
    call. The definition goes into the payment policy registry read by
    X402Middleware, and a summary is advertised under _meta.payment.
    """

    def __init__(
        self,
        name: str,
        version: str = '1.0.0',
        default_pay_to: Optional[str] = None,
        default_facilitator: Optional[FacilitatorConfig] = None,
        instructions: Optional[str] = None,
        config: Optional[X402Config] = None
    ):
        config = config or get_x402_config()
        self.name = name
        self.version = version
        self.instructions = instructions

        self.payments = PaymentPolicyRegistry(
            default_pay_to=default_pay_to or config.default_pay_to,
            default_facilitator=default_facilitator,
            tool_pay_to=config.tool_pay_to,
            tool_facilitators={
                tool: FacilitatorConfig(url=url) for tool, url in config.tool_facilitators.items()
            },
        )
        self.resolver = RequirementResolver(self.payments)
        self._tools: Dict[str, RegisteredTool] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_tool(
        self,
        name: str,
        handler: ToolHandler,
        payment: Optional[ToolPaymentDefinition] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        input_model: Optional[Type[BaseModel]] = None,
        annotations: Optional[Dict[str, Any]] = None,
        meta: Optional[Dict[str, Any]] = None
    ) -> RegisteredTool:
        """
        Register a tool, optionally behind a payment

        Args:
            name: Tool name used in tools/call
            handler: Called with the validated input model (or the raw
                arguments dict when no input_model is given)
            payment: Static requirement or resolver callable, None for a free tool
            title: Human readable title
            description: Tool description
            input_model: Pydantic model validating the call arguments
            annotations: MCP tool annotations
            meta: Extra _meta entries advertised by tools/list

        Returns:
            The registered tool
        """
        applied_meta = dict(meta or {})
        if payment is not None:
            self.payments.register_definition(name, payment)
            applied_meta['payment'] = self._payment_meta(payment)

        tool = RegisteredTool(
            name=name,
            handler=handler,
            title=title,
            description=description,
            input_model=input_model,
            annotations=annotations,
            meta=applied_meta,
        )
        if name in self._tools:
            logger.warning(f"Tool '{name}' registered twice, replacing previous handler")
        self._tools[name] = tool
        logger.debug(f"Registered tool '{name}' (paid={payment is not None})")
        return tool

    def tool(
        self,
        name: Optional[str] = None,
        payment: Optional[ToolPaymentDefinition] = None,
        **kwargs
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of register_tool"""
        description = kwargs.pop('description', None)

        def decorator(func: ToolHandler) -> ToolHandler:
            self.register_tool(
                name or func.__name__,
                func,
                payment=payment,
                description=description or inspect.getdoc(func),
                **kwargs
            )
            return func
        return decorator

    def _payment_meta(self, payment: ToolPaymentDefinition) -> Dict[str, Any]:
        if not isinstance(payment, ToolPaymentRequirements):
            return {'dynamic': True}

        price = payment.price
        if isinstance(price, BaseModel):
            price = price.model_dump(mode='json')
        elif not isinstance(price, (str, int, float)):
            price = str(price)

        facilitator = payment.facilitator or self.payments.default_facilitator
        meta = {
            'dynamic': False,
            'price': price,
            'network': payment.network,
            'payTo': payment.pay_to or self.payments.default_pay_to,
            'facilitator': facilitator.model_dump(exclude_none=True) if facilitator else None,
            'mode': payment.mode.value if hasattr(payment.mode, 'value') else payment.mode,
        }
        return {key: value for key, value in meta.items() if value is not None}

    # ------------------------------------------------------------------
    # Payment lookups
    # ------------------------------------------------------------------

    def get_tool_payment_definition(self, name: str) -> Optional[PaymentPolicy]:
        return self.payments.policy_for(name)

    def requires_payment(self, name: str) -> bool:
        return self.payments.requires_payment(name)

    def get_default_config(self) -> Dict[str, Any]:
        return {
            'pay_to': self.payments.default_pay_to,
            'facilitator': self.payments.default_facilitator,
        }

    async def resolve_payment_config(
        self,
        name: str,
        context: DynamicPaymentContext
    ) -> Optional[ToolPaymentRequirements]:
        """Requirement for a call with the server defaults filled in"""
        requirement = await self.resolver.resolve(name, context)
        if requirement is None:
            return None

        return requirement.model_copy(update={
            'pay_to': self.payments.pay_to_for(name, requirement),
            'facilitator': self.payments.facilitator_for(name, requirement),
        })

    # ------------------------------------------------------------------
    # JSON-RPC dispatch
    # ------------------------------------------------------------------

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a tool

        Unknown tools and invalid arguments raise JsonRpcError; errors raised
        by the handler are returned as a result with isError set.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise JsonRpcError(INVALID_PARAMS, f"Tool {name} not found")

        arguments = arguments or {}
        if tool.input_model is not None:
            try:
                args = tool.input_model.model_validate(arguments)
            except ValidationError as e:
                raise JsonRpcError(
                    INVALID_PARAMS,
                    f"Invalid arguments for tool {name}: {e.errors(include_url=False)}"
                ) from e
        else:
            args = arguments

        try:
            result = tool.handler(args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"❌ Tool '{name}' failed: {e}", exc_info=True)
            return {**_text_result(str(e)), 'isError': True}

        return _normalize_result(result)

    async def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        Handle one JSON-RPC message

        Returns:
            Response object, or None for a notification
        """
        if not isinstance(message, dict) or message.get('jsonrpc') != JSONRPC_VERSION \
                or not isinstance(message.get('method'), str):
            request_id = message.get('id') if isinstance(message, dict) else None
            return error_response(INVALID_REQUEST, 'Invalid Request', request_id)

        method = message['method']
        params = message.get('params') or {}
        if not isinstance(params, dict):
            return error_response(INVALID_PARAMS, 'Params must be an object', message.get('id'))

        if 'id' not in message:
            if method == 'notifications/initialized':
                logger.info(f"Client initialized on server '{self.name}'")
            else:
                logger.debug(f"Ignoring notification {method}")
            return None

        request_id = message['id']
        try:
            result = await self._dispatch(method, params)
        except JsonRpcError as e:
            return {'jsonrpc': JSONRPC_VERSION, 'error': e.to_dict(), 'id': request_id}

        return {'jsonrpc': JSONRPC_VERSION, 'result': result, 'id': request_id}

    async def _dispatch(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == 'initialize':
            result = {
                'protocolVersion': params.get('protocolVersion') or PROTOCOL_VERSION,
                'capabilities': {'tools': {'listChanged': False}},
                'serverInfo': {'name': self.name, 'version': self.version},
            }
            if self.instructions:
                result['instructions'] = self.instructions
            return result

        if method == 'ping':
            return {}

        if method == 'tools/list':
            return {'tools': self.list_tools()}

        if method == 'tools/call':
            name = params.get('name')
            if not isinstance(name, str):
                raise JsonRpcError(INVALID_PARAMS, 'Tool name must be a string')
            arguments = params.get('arguments')
            if arguments is not None and not isinstance(arguments, dict):
                raise JsonRpcError(INVALID_PARAMS, 'Tool arguments must be an object')
            return await self.call_tool(name, arguments)

        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
