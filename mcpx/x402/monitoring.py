"""
Prometheus Monitoring for mcpx x402 Payments
Metrics for challenges, facilitator calls, settlements and the requirement cache
"""

import time
import logging
from typing import Callable
from functools import wraps
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
)
from prometheus_fastapi_instrumentator import Instrumentator

logger = logging.getLogger(__name__)

# =============================================================================
# CHALLENGE METRICS
# =============================================================================

challenges_issued_total = Counter(
    'x402_challenges_issued_total',
    'Total number of 402 challenges issued for calls without payment',
    ['tool', 'client']
)

payments_rejected_total = Counter(
    'x402_payments_rejected_total',
    'Total number of submitted payments answered with 402',
    ['tool', 'reason']
)

payments_accepted_total = Counter(
    'x402_payments_accepted_total',
    'Total number of paid calls forwarded to the tool',
    ['tool', 'mode']
)

passthrough_total = Counter(
    'x402_passthrough_total',
    'Gated tool calls forwarded without payment enforcement',
    ['reason']
)

# =============================================================================
# FACILITATOR METRICS
# =============================================================================

facilitator_requests_total = Counter(
    'x402_facilitator_requests_total',
    'Total requests to the facilitator',
    ['operation', 'status']
)

facilitator_request_duration = Histogram(
    'x402_facilitator_request_duration_seconds',
    'Duration of facilitator requests',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# =============================================================================
# SETTLEMENT METRICS
# =============================================================================

settlements_total = Counter(
    'x402_settlements_total',
    'Settlement outcomes by payment mode',
    ['mode', 'status']
)

background_settlements_inflight = Gauge(
    'x402_background_settlements_inflight',
    'Settlements started after execution that have not completed yet'
)

# =============================================================================
# CACHE METRICS
# =============================================================================

requirement_cache_hits_total = Counter(
    'x402_requirement_cache_hits_total',
    'Requirement cache hits'
)

requirement_cache_misses_total = Counter(
    'x402_requirement_cache_misses_total',
    'Requirement cache misses'
)

# =============================================================================
# SYSTEM METRICS
# =============================================================================

system_info = Info(
    'x402_system',
    'System information'
)

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def track_facilitator_request(operation: str):
    """Decorator to track facilitator request metrics"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "unknown"

            try:
                result = await func(*args, **kwargs)
                status = "success"
                return result
            except Exception:
                status = "error"
                raise
            finally:
                duration = time.time() - start_time
                facilitator_request_duration.labels(
                    operation=operation
                ).observe(duration)
                facilitator_requests_total.labels(
                    operation=operation,
                    status=status
                ).inc()

        return wrapper
    return decorator


# =============================================================================
# INITIALIZATION
# =============================================================================

def setup_monitoring(app, version: str = '1.0.0'):
    """
    Set up Prometheus monitoring for FastAPI app

    Usage:
        from mcpx.x402.monitoring import setup_monitoring
        setup_monitoring(app)
    """
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=False,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health"],
        env_var_name="PROMETHEUS_ENABLED",
        inprogress_name="x402_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint="/metrics", include_in_schema=False)

    system_info.info({
        'version': version,
        'service': 'mcpx'
    })

    logger.info("Prometheus monitoring setup complete - metrics available at /metrics")

