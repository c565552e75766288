"""
mcpx Demo Server - Main FastAPI Application
JSON-RPC tool server with free and x402 paid tools
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from mcpx.routes import create_router, limiter
from mcpx.server import McpXServer
from mcpx.sessions import McpRequestHandler
from mcpx.x402.cache import RequirementCache
from mcpx.x402.config import get_x402_config
from mcpx.x402.facilitator import close_facilitators
from mcpx.x402.middleware import X402Middleware
from mcpx.x402.models import (
    DynamicPaymentContext,
    FacilitatorConfig,
    PaymentMode,
    ToolPaymentRequirements,
)
from mcpx.x402.monitoring import setup_monitoring
from mcpx.x402.security import validate_production_config
from mcpx.x402.settlement import SettlementTracker

VERSION = "1.0.0"
PRICE_PER_CHARACTER = 0.0001


class EchoInput(BaseModel):
    message: str = Field(..., description="Message to echo")


def dynamic_echo_price(context: DynamicPaymentContext) -> Optional[ToolPaymentRequirements]:
    """$0.0001 per character, empty messages are free"""
    message = str(context.arguments.get("message") or "")
    if not message:
        return None
    return ToolPaymentRequirements(
        price=f"${PRICE_PER_CHARACTER * len(message):.4f}",
        network="base",
        mode=PaymentMode.AFTER_EXECUTION,
    )


def create_server() -> McpXServer:
    """Build a tool server; one is created per session plus one for the payment middleware"""
    config = get_x402_config()
    server = McpXServer(
        name="mcpx-demo-server",
        version=VERSION,
        default_facilitator=FacilitatorConfig(url=config.default_facilitator_url),
        config=config,
    )

    server.register_tool(
        "echo",
        lambda args: f"Echo: {args.message}",
        title="Echo",
        description="Echoes back the input message (free)",
        input_model=EchoInput,
    )

    # payThenService is the default mode: verify first, settle after execution
    server.register_tool(
        "premium_echo",
        lambda args: f"✨ Premium Echo ✨\n\n{args.message}\n\n🎉",
        payment=ToolPaymentRequirements(price="$0.001", network="base"),
        title="Premium Echo",
        description="Premium echo with fancy formatting ($0.001, payThenService)",
        input_model=EchoInput,
    )

    server.register_tool(
        "secure_echo",
        lambda args: f"🔐 Secure Echo 🔐\n\n{args.message}\n\n✅ Payment settled before execution",
        payment=ToolPaymentRequirements(
            price="$0.002",
            network="base",
            mode=PaymentMode.BEFORE_EXECUTION,
        ),
        title="Secure Echo",
        description="Secure echo that requires payment before execution ($0.002, payBeforeService)",
        input_model=EchoInput,
    )

    server.register_tool(
        "dynamic_echo",
        lambda args: f"📊 Dynamic Echo ({len(args.message)} chars)\n\n{args.message}",
        payment=dynamic_echo_price,
        title="Dynamic Echo",
        description="Echo with dynamic pricing based on message length",
        input_model=EchoInput,
    )

    return server


# Shared payment layer state
x402_config = get_x402_config()
definition_server = create_server()
requirement_cache = RequirementCache(ttl=x402_config.requirement_cache_ttl)
settlement_tracker = SettlementTracker(history_size=x402_config.settlement_history)
mcp_handler = McpRequestHandler(create_server)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    # Startup
    logger.info("Starting mcpx demo server...")
    validate_production_config(definition_server.payments.default_pay_to)
    logger.info(f"💰 Payment receiver (payTo): {definition_server.payments.default_pay_to or '(not configured)'}")
    logger.info(f"🏦 Facilitator: {x402_config.default_facilitator_url}")
    logger.info(f"Paid tools: {definition_server.payments.tools()}")

    yield

    # Shutdown
    logger.info("Shutting down mcpx demo server...")
    if settlement_tracker.inflight:
        logger.info(f"Waiting for {settlement_tracker.inflight} background settlements")
        await settlement_tracker.drain()
    requirement_cache.clear()
    await close_facilitators()
    logger.info("mcpx demo server shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="mcpx Demo Server",
    description="JSON-RPC tools paid per call with x402",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add x402 payment middleware
if x402_config.enabled:
    logger.info("x402 middleware enabled for paid tools")
    app.add_middleware(
        X402Middleware,
        server=definition_server,
        cache=requirement_cache,
        settlement_tracker=settlement_tracker,
        config=x402_config,
        paths=["/mcp"],
    )

# CORS configuration
allowed_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["mcp-session-id", "X-PAYMENT-RESPONSE"],
)

# MCP endpoint
app.add_route("/mcp", mcp_handler.handle, methods=["POST", "DELETE"])

# Include routers
app.include_router(create_router(definition_server, settlement_tracker, requirement_cache))

# Metrics
setup_monitoring(app, version=VERSION)


@app.get("/")
async def root():
    """Root endpoint with server information"""
    return {
        "name": "mcpx Demo Server",
        "version": VERSION,
        "mcp_endpoint": "/mcp",
        "tools": {
            "echo": "free",
            "premium_echo": "$0.001, payThenService, base",
            "secure_echo": "$0.002, payBeforeService, base",
            "dynamic_echo": "dynamic pricing, base",
        },
        "payment_endpoints": {
            "paid_tools": "/x402/tools",
            "supported_networks": "/x402/supported-networks",
            "settlements": "/x402/settlements",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sessions": len(mcp_handler.sessions),
        "background_settlements": settlement_tracker.inflight,
    }


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    """Custom 500 handler"""
    logger.error(f"Internal error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later."
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Get configuration from environment
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "false").lower() == "true"

    display_host = "localhost" if host == "0.0.0.0" else host
    logger.info(f"🚀 mcpx demo server starting on http://{display_host}:{port}/mcp")

    uvicorn.run(
        "mcpx.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
