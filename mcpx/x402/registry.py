"""
mcpx Payment Policy Registry
Per-tool payment policies and the receiving address / facilitator defaults
"""

import logging
from dataclasses import dataclass
from typing import Dict, Literal, Optional, Union

from .models import (
    FacilitatorConfig,
    ToolPaymentDefinition,
    ToolPaymentRequirements,
    ToolPaymentResolver,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaticPolicy:
    """Tool always charges the same requirement"""
    requirement: ToolPaymentRequirements
    kind: Literal['static'] = 'static'


@dataclass(frozen=True)
class DynamicPolicy:
    """Tool computes its requirement from each call"""
    resolver: ToolPaymentResolver
    kind: Literal['dynamic'] = 'dynamic'


PaymentPolicy = Union[StaticPolicy, DynamicPolicy]


class PaymentPolicyRegistry:
    """
    Map of tool name to payment policy

    Registration is last-writer-wins. Defaults for payTo and facilitator are
    kept apart from the policies and only applied by pay_to_for() and
    facilitator_for() when a call is enforced.
    """

    def __init__(
        self,
        default_pay_to: Optional[str] = None,
        default_facilitator: Optional[FacilitatorConfig] = None,
        tool_pay_to: Optional[Dict[str, str]] = None,
        tool_facilitators: Optional[Dict[str, FacilitatorConfig]] = None
    ):
        self.default_pay_to = default_pay_to
        self.default_facilitator = default_facilitator
        self.tool_pay_to = dict(tool_pay_to or {})
        self.tool_facilitators = dict(tool_facilitators or {})
        self._policies: Dict[str, PaymentPolicy] = {}

    def register(self, tool_name: str, policy: PaymentPolicy) -> None:
        if tool_name in self._policies:
            logger.debug(f"Replacing payment policy for tool '{tool_name}'")
        self._policies[tool_name] = policy

    def register_definition(self, tool_name: str, definition: ToolPaymentDefinition) -> PaymentPolicy:
        """Wrap a plain requirement or a resolver callable in its policy variant"""
        if isinstance(definition, ToolPaymentRequirements):
            policy: PaymentPolicy = StaticPolicy(requirement=definition)
        elif callable(definition):
            policy = DynamicPolicy(resolver=definition)
        else:
            raise TypeError(
                f"Payment for tool '{tool_name}' must be ToolPaymentRequirements or a callable, "
                f"got {type(definition).__name__}"
            )
        self.register(tool_name, policy)
        return policy

    def policy_for(self, tool_name: str) -> Optional[PaymentPolicy]:
        return self._policies.get(tool_name)

    def requires_payment(self, tool_name: str) -> bool:
        return tool_name in self._policies

    def tools(self):
        return list(self._policies.keys())

    def pay_to_for(
        self,
        tool_name: str,
        requirement: ToolPaymentRequirements,
        fallback: Optional[str] = None
    ) -> Optional[str]:
        """Receiving address: requirement, then tool override, then defaults"""
        return (
            requirement.pay_to
            or self.tool_pay_to.get(tool_name)
            or self.default_pay_to
            or fallback
        )

    def facilitator_for(
        self,
        tool_name: str,
        requirement: ToolPaymentRequirements,
        fallback: Optional[FacilitatorConfig] = None
    ) -> Optional[FacilitatorConfig]:
        """Facilitator: requirement, then tool override, then defaults"""
        return (
            requirement.facilitator
            or self.tool_facilitators.get(tool_name)
            or self.default_facilitator
            or fallback
        )
