#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx Facilitator Client
Python client for the x402 facilitator verify / settle / supported API
"""

import httpx
import logging
from typing import Any, Dict, List, Optional

from .config import get_x402_config
from .errors import FacilitatorError
from .models import (
    FacilitatorConfig,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
)
from .monitoring import track_facilitator_request

logger = logging.getLogger(__name__)


class FacilitatorClient:
    """
    Async client for an x402 facilitator

    Supports:
    - Payment verification via /verify endpoint
    - Payment settlement via /settle endpoint
    - Fee payer discovery via /supported endpoint

    Non-200 responses and transport failures raise; callers decide how a
    failed facilitator call is reported.
    """

    def __init__(
        self,
        config: FacilitatorConfig,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize facilitator client

        Args:
            config: Facilitator URL and optional auth headers
            timeout: HTTP request timeout in seconds (defaults to config)
            http_client: Pre-built httpx client, mainly for tests
        """
        self.config = config
        self.facilitator_url = config.url.rstrip('/')
        self.headers = dict(config.headers or {})
        if timeout is None:
            timeout = get_x402_config().facilitator_timeout
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"Initialized facilitator client: {self.facilitator_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    def _request_body(
        self,
        payment: PaymentPayload,
        requirements: PaymentRequirements
    ) -> Dict[str, Any]:
        return {
            "x402Version": payment.x402_version,
            "paymentPayload": payment.to_wire(),
            "paymentRequirements": requirements.to_wire(),
        }

    async def _post(self, operation: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(
                f"{self.facilitator_url}/{operation}",
                json=body,
                headers={"Content-Type": "application/json", **self.headers}
            )
        except httpx.HTTPError as e:
            logger.error(f"Facilitator {operation} request failed: {e}")
            raise FacilitatorError(f"Facilitator unreachable during {operation}: {e}") from e

        if response.status_code != 200:
            logger.error(f"Facilitator {operation} failed: {response.status_code} {response.text}")
            raise FacilitatorError(
                f"Failed to {operation} payment: HTTP {response.status_code} {response.reason_phrase}",
                status_code=response.status_code
            )

        return response.json()

    @track_facilitator_request("verify")
    async def verify(
        self,
        payment: PaymentPayload,
        requirements: PaymentRequirements
    ) -> VerifyResponse:
        """
        Verify payment authorization via facilitator

        Args:
            payment: Decoded X-PAYMENT payload from client
            requirements: Requirement the payment was matched against

        Returns:
            VerifyResponse with validation status
        """
        data = await self._post("verify", self._request_body(payment, requirements))
        return VerifyResponse.model_validate(data)

    @track_facilitator_request("settle")
    async def settle(
        self,
        payment: PaymentPayload,
        requirements: PaymentRequirements
    ) -> SettleResponse:
        """
        Settle payment on chain via facilitator

        Args:
            payment: Decoded X-PAYMENT payload from client
            requirements: Requirement the payment was matched against

        Returns:
            SettleResponse with settlement details
        """
        data = await self._post("settle", self._request_body(payment, requirements))
        return SettleResponse.model_validate(data)

    @track_facilitator_request("supported")
    async def supported(self) -> List[Dict[str, Any]]:
        """
        Query facilitator for supported payment schemes and networks

        Returns:
            List of supported payment kinds
        """
        try:
            response = await self.client.get(
                f"{self.facilitator_url}/supported",
                headers=self.headers
            )
        except httpx.HTTPError as e:
            raise FacilitatorError(f"Facilitator unreachable during supported: {e}") from e

        if response.status_code != 200:
            raise FacilitatorError(
                f"Failed to get supported payment kinds: HTTP {response.status_code}",
                status_code=response.status_code
            )

        return response.json().get('kinds', [])


# Clients are shared per facilitator URL and auth headers
_facilitators: Dict[tuple, FacilitatorClient] = {}


def get_facilitator(config: FacilitatorConfig) -> FacilitatorClient:
    """
    Get or create the facilitator client for a configuration

    Args:
        config: Facilitator configuration

    Returns:
        FacilitatorClient instance
    """
    key = (config.url.rstrip('/'), tuple(sorted((config.headers or {}).items())))
    client = _facilitators.get(key)
    if client is None:
        client = FacilitatorClient(config)
        _facilitators[key] = client
    return client


async def close_facilitators():
    """Close all shared facilitator clients"""
    clients = list(_facilitators.values())
    _facilitators.clear()
    for client in clients:
        await client.close()
