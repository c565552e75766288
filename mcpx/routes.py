#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
mcpx x402 Routes
Read-only endpoints exposing paid tools and payment layer state
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from .server import McpXServer
from .x402.cache import RequirementCache
from .x402.networks import SUPPORTED_EVM_NETWORKS, SUPPORTED_SVM_NETWORKS
from .x402.settlement import SettlementTracker

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


class SettlementRecordResponse(BaseModel):
    tool_name: str
    network: str
    payer: Optional[str] = None
    status: str
    reason: Optional[str] = None
    transaction: Optional[str] = None
    started_at: str
    finished_at: Optional[str] = None


class SettlementListResponse(BaseModel):
    inflight: int
    records: List[SettlementRecordResponse]


def create_router(
    server: McpXServer,
    settlements: SettlementTracker,
    cache: RequirementCache
) -> APIRouter:
    """Build the /x402 router over the live payment layer objects"""
    router = APIRouter(prefix="/x402", tags=["x402 Payments"])

    @router.get("/supported-networks")
    @limiter.limit("20/minute")
    async def get_supported_networks(request: Request):
        """Networks a tool may declare in its payment requirement"""
        return {
            "evm": sorted(SUPPORTED_EVM_NETWORKS),
            "svm": sorted(SUPPORTED_SVM_NETWORKS),
        }

    @router.get("/tools")
    @limiter.limit("20/minute")
    async def get_paid_tools(request: Request):
        """Paid tools with the payment summary advertised by tools/list"""
        return {
            "tools": [
                {"name": tool["name"], "payment": tool["_meta"]["payment"]}
                for tool in server.list_tools()
                if "payment" in tool.get("_meta", {})
            ],
            "defaults": {
                "pay_to": server.payments.default_pay_to,
                "facilitator": server.payments.default_facilitator,
            },
        }

    @router.get("/settlements", response_model=SettlementListResponse)
    @limiter.limit("15/minute")
    async def get_settlements(
        request: Request,
        status: Optional[str] = Query(None, description="Filter by settlement status")
    ):
        """Recent settlements started after tool execution"""
        records = [
            SettlementRecordResponse(
                tool_name=record.tool_name,
                network=record.network,
                payer=record.payer,
                status=record.status,
                reason=record.reason,
                transaction=record.transaction,
                started_at=record.started_at.isoformat(),
                finished_at=record.finished_at.isoformat() if record.finished_at else None,
            )
            for record in reversed(settlements.history)
            if status is None or record.status == status
        ]
        return SettlementListResponse(inflight=settlements.inflight, records=records)

    @router.get("/cache/stats")
    @limiter.limit("30/minute")
    async def get_cache_stats(request: Request):
        """Requirement cache statistics"""
        return cache.get_stats()

    return router
