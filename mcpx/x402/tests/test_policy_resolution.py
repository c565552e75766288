"""
Tests for PaymentPolicyRegistry and RequirementResolver
"""

import pytest

from mcpx.x402.errors import ConfigurationError
from mcpx.x402.models import (
    DynamicPaymentContext,
    FacilitatorConfig,
    PaymentMode,
    ToolPaymentRequirements,
    resolve_payment_mode,
)
from mcpx.x402.registry import DynamicPolicy, PaymentPolicyRegistry, StaticPolicy
from mcpx.x402.resolver import RequirementResolver

STATIC = ToolPaymentRequirements(price='$0.001', network='base')


def make_context(arguments=None, tool_name='tool'):
    body = {'jsonrpc': '2.0', 'id': 1, 'method': 'tools/call',
            'params': {'name': tool_name, 'arguments': arguments or {}}}
    return DynamicPaymentContext(tool_name, headers={}, body=body)


# =============================================================================
# REGISTRY
# =============================================================================

def test_register_definition_static():
    registry = PaymentPolicyRegistry()
    policy = registry.register_definition('premium', STATIC)

    assert isinstance(policy, StaticPolicy)
    assert policy.kind == 'static'
    assert registry.requires_payment('premium')
    assert not registry.requires_payment('free')
    assert registry.policy_for('free') is None


def test_register_definition_dynamic():
    registry = PaymentPolicyRegistry()
    policy = registry.register_definition('dynamic', lambda context: STATIC)

    assert isinstance(policy, DynamicPolicy)
    assert policy.kind == 'dynamic'


def test_register_definition_rejects_other_values():
    registry = PaymentPolicyRegistry()
    with pytest.raises(TypeError):
        registry.register_definition('bad', {'price': '$0.01'})


def test_last_registration_wins():
    registry = PaymentPolicyRegistry()
    registry.register_definition('tool', STATIC)
    registry.register_definition('tool', lambda context: None)

    assert registry.policy_for('tool').kind == 'dynamic'
    assert registry.tools() == ['tool']


def test_pay_to_precedence():
    registry = PaymentPolicyRegistry(
        default_pay_to='0xdefault',
        tool_pay_to={'override': '0xoverride'},
    )
    own = ToolPaymentRequirements(price='$0.001', network='base', pay_to='0xown')

    assert registry.pay_to_for('any', own, fallback='0xfallback') == '0xown'
    assert registry.pay_to_for('override', STATIC, fallback='0xfallback') == '0xoverride'
    assert registry.pay_to_for('any', STATIC, fallback='0xfallback') == '0xdefault'
    assert PaymentPolicyRegistry().pay_to_for('any', STATIC, fallback='0xfallback') == '0xfallback'
    assert PaymentPolicyRegistry().pay_to_for('any', STATIC) is None


def test_facilitator_precedence():
    default = FacilitatorConfig(url='https://default.test')
    tool_specific = FacilitatorConfig(url='https://tool.test')
    registry = PaymentPolicyRegistry(default_facilitator=default, tool_facilitators={'special': tool_specific})

    assert registry.facilitator_for('special', STATIC) == tool_specific
    assert registry.facilitator_for('other', STATIC) == default


def test_defaults_not_written_into_policy():
    registry = PaymentPolicyRegistry(default_pay_to='0xdefault')
    registry.register_definition('premium', STATIC)

    registry.pay_to_for('premium', STATIC)
    assert registry.policy_for('premium').requirement.pay_to is None


# =============================================================================
# PAYMENT MODE
# =============================================================================

def test_payment_mode_defaults_to_after_execution():
    assert resolve_payment_mode(STATIC) == PaymentMode.AFTER_EXECUTION
    assert resolve_payment_mode(None) == PaymentMode.AFTER_EXECUTION


def test_payment_mode_unknown_value_falls_back():
    requirement = ToolPaymentRequirements(price='$0.001', network='base', mode='payWhenever')
    assert resolve_payment_mode(requirement) == PaymentMode.AFTER_EXECUTION


def test_payment_mode_before_execution_by_string():
    requirement = ToolPaymentRequirements(price='$0.001', network='base', mode='payBeforeService')
    assert resolve_payment_mode(requirement) == PaymentMode.BEFORE_EXECUTION


# =============================================================================
# RESOLVER
# =============================================================================

class TestRequirementResolver:
    """Static and dynamic requirement resolution"""

    @pytest.mark.asyncio
    async def test_static_returned_unchanged(self):
        registry = PaymentPolicyRegistry(default_pay_to='0xdefault')
        registry.register_definition('premium', STATIC)

        resolved = await RequirementResolver(registry).resolve('premium', make_context())
        assert resolved is STATIC

    @pytest.mark.asyncio
    async def test_unregistered_tool(self):
        resolved = await RequirementResolver(PaymentPolicyRegistry()).resolve('free', make_context())
        assert resolved is None

    @pytest.mark.asyncio
    async def test_dynamic_receives_arguments(self):
        seen = {}

        def resolver(context):
            seen.update(context.arguments)
            return ToolPaymentRequirements(price='$0.002', network='base')

        registry = PaymentPolicyRegistry()
        registry.register_definition('dynamic', resolver)

        resolved = await RequirementResolver(registry).resolve('dynamic', make_context({'message': 'abc'}))
        assert resolved.price == '$0.002'
        assert seen == {'message': 'abc'}

    @pytest.mark.asyncio
    async def test_dynamic_async_resolver(self):
        async def resolver(context):
            return ToolPaymentRequirements(price='$0.004', network='base')

        registry = PaymentPolicyRegistry()
        registry.register_definition('dynamic', resolver)

        resolved = await RequirementResolver(registry).resolve('dynamic', make_context())
        assert resolved.price == '$0.004'

    @pytest.mark.asyncio
    async def test_dynamic_none_means_free(self):
        registry = PaymentPolicyRegistry()
        registry.register_definition('dynamic', lambda context: None)

        assert await RequirementResolver(registry).resolve('dynamic', make_context()) is None

    @pytest.mark.asyncio
    async def test_dynamic_errors_propagate(self):
        def resolver(context):
            raise ValueError('no price')

        registry = PaymentPolicyRegistry()
        registry.register_definition('dynamic', resolver)

        with pytest.raises(ValueError, match='no price'):
            await RequirementResolver(registry).resolve('dynamic', make_context())

    @pytest.mark.asyncio
    async def test_dynamic_wrong_return_type(self):
        registry = PaymentPolicyRegistry()
        registry.register_definition('dynamic', lambda context: {'price': '$0.01'})

        with pytest.raises(ConfigurationError):
            await RequirementResolver(registry).resolve('dynamic', make_context())
