"""Prometheus metrics middleware and orchestration counters."""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST


# Define metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'HTTP requests currently in progress',
    ['method', 'endpoint']
)

orchestration_runs_total = Counter(
    'orchestration_runs_total',
    'Total orchestration runs',
    ['strategy', 'status']
)

orchestration_run_duration_seconds = Histogram(
    'orchestration_run_duration_seconds',
    'Orchestration run duration in seconds',
    ['strategy'],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600]
)

agent_tasks_total = Counter(
    'agent_tasks_total',
    'Agent task results',
    ['role', 'outcome']  # outcome: success/failure
)

backend_retries_total = Counter(
    'backend_retries_total',
    'Generation backend retries',
    ['kind']  # kind: timeout/unavailable
)

stored_images = Gauge(
    'stored_images',
    'Images currently held in the in-process image store'
)


class MetricsMiddleware:
    """Middleware to collect Prometheus metrics."""

    async def __call__(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        """
        Process request and collect metrics.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response from handler
        """
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = request.url.path

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            status_code = 500
            raise
        finally:
            duration = time.time() - start_time
            http_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()

        return response


def get_metrics() -> Response:
    """
    Get Prometheus metrics.

    Returns:
        Response with metrics in Prometheus format
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Helper functions to track application-specific metrics

def track_run_completed(strategy: str, status: str, duration: float):
    """Track orchestration run completion."""
    orchestration_runs_total.labels(strategy=strategy, status=status).inc()
    orchestration_run_duration_seconds.labels(strategy=strategy).observe(duration)


def track_task_result(role: str, success: bool):
    """Track one agent task result."""
    agent_tasks_total.labels(role=role, outcome="success" if success else "failure").inc()


def track_backend_retry(kind: str):
    """Track a retried backend call."""
    backend_retries_total.labels(kind=kind).inc()


def set_stored_images(count: int):
    """Track image store size."""
    stored_images.set(count)
