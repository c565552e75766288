"""
mcpx Requirement Resolver
Turns a tool's payment policy into the requirement for one call
"""

import inspect
import logging
from typing import Optional

from .errors import ConfigurationError
from .models import DynamicPaymentContext, ToolPaymentRequirements
from .registry import DynamicPolicy, PaymentPolicyRegistry, StaticPolicy

logger = logging.getLogger(__name__)


class RequirementResolver:
    """
    Resolve the effective requirement for a tool call.

    Static policies return the stored requirement unchanged. Dynamic policies
    call the resolver with the call context; returning None means the call
    is free. Errors raised by a resolver are not caught here.
    """

    def __init__(self, registry: PaymentPolicyRegistry):
        self.registry = registry

    async def resolve(
        self,
        tool_name: str,
        context: DynamicPaymentContext
    ) -> Optional[ToolPaymentRequirements]:
        policy = self.registry.policy_for(tool_name)
        if policy is None:
            return None

        if policy.kind == 'static':
            return self._resolve_static(policy)
        return await self._resolve_dynamic(tool_name, policy, context)

    def _resolve_static(self, policy: StaticPolicy) -> ToolPaymentRequirements:
        return policy.requirement

    async def _resolve_dynamic(
        self,
        tool_name: str,
        policy: DynamicPolicy,
        context: DynamicPaymentContext
    ) -> Optional[ToolPaymentRequirements]:
        result = policy.resolver(context)
        if inspect.isawaitable(result):
            result = await result

        if result is None:
            logger.info(f"Resolver for '{tool_name}' waived payment for this call")
            return None

        if not isinstance(result, ToolPaymentRequirements):
            raise ConfigurationError(
                f"Payment resolver for '{tool_name}' returned {type(result).__name__}, "
                "expected ToolPaymentRequirements or None"
            )
        return result
