"""
Telemetry and monitoring utilities.
"""
import logging
import time
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from fastapi import FastAPI, Response

logger = logging.getLogger(__name__)

# HTTP metrics
request_count = Counter(
    'livechat_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'livechat_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Routing metrics
queue_length = Gauge(
    'livechat_queue_length',
    'Customers waiting for a human agent'
)

live_agents = Gauge(
    'livechat_live_agents',
    'Agents with a live connection'
)

active_sessions = Gauge(
    'livechat_active_sessions',
    'Customer sessions held in memory'
)

websocket_connections = Gauge(
    'livechat_websocket_connections_active',
    'Active WebSocket connections'
)

handoffs = Counter(
    'livechat_handoffs_total',
    'Human handoff requests by outcome',
    ['outcome']
)

chats_ended = Counter(
    'livechat_chats_ended_total',
    'Human and AI-only chats ended, by reason',
    ['reason']
)

ai_responses = Counter(
    'livechat_ai_responses_total',
    'AI responder results by outcome',
    ['outcome']
)

ai_response_time = Histogram(
    'livechat_ai_response_seconds',
    'AI responder latency'
)

transition_errors = Counter(
    'livechat_transition_errors_total',
    'Unexpected errors while handling an inbound event',
    ['event']
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Setup telemetry and monitoring for the application.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def track_requests(request, call_next):
        """Track HTTP request metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        request_count.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        return response

    logger.info("Telemetry setup complete")


def update_routing_gauges(sessions: int, agents: int, queued: int) -> None:
    """Refresh the routing gauges after a transition."""
    active_sessions.set(sessions)
    live_agents.set(agents)
    queue_length.set(queued)


def track_handoff(outcome: str) -> None:
    handoffs.labels(outcome=outcome).inc()


def track_chat_ended(reason: str) -> None:
    chats_ended.labels(reason=reason).inc()


def track_ai_response(outcome: str, duration: float) -> None:
    ai_responses.labels(outcome=outcome).inc()
    ai_response_time.observe(duration)


def track_transition_error(event: str) -> None:
    transition_errors.labels(event=event).inc()


def track_websocket_opened() -> None:
    websocket_connections.inc()


def track_websocket_closed() -> None:
    websocket_connections.dec()


__all__ = [
    'setup_telemetry',
    'update_routing_gauges',
    'track_handoff',
    'track_chat_ended',
    'track_ai_response',
    'track_transition_error',
    'track_websocket_opened',
    'track_websocket_closed',
]
