"""
Prometheus Metrics for the Liquidity Agent

Exposes flow, step and recovery metrics for monitoring and alerting.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class AgentMetrics:
    """
    Flow and recovery metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Deposit/withdraw flow outcomes and durations
    - Ledger step outcomes and latency
    - Recovery chain outcomes
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics with custom registry or default"""
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

        self._lock = threading.RLock()

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === FLOW METRICS ===
        self.flows_started_total = Counter(
            "liquidity_agent_flows_started_total",
            "Total number of flows started",
            ["flow"],
            registry=self.registry,
        )

        self.flows_completed_total = Counter(
            "liquidity_agent_flows_completed_total",
            "Total number of flows that reached their receipt",
            ["flow"],
            registry=self.registry,
        )

        self.flows_failed_total = Counter(
            "liquidity_agent_flows_failed_total",
            "Total number of flows that ended in Failed",
            ["flow", "failed_step"],
            registry=self.registry,
        )

        self.flow_duration_seconds = Histogram(
            "liquidity_agent_flow_duration_seconds",
            "Wall time of complete flows",
            ["flow"],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600],
            registry=self.registry,
        )

        # === STEP METRICS ===
        self.steps_total = Counter(
            "liquidity_agent_steps_total",
            "Ledger operations executed by flows",
            ["operation", "outcome"],
            registry=self.registry,
        )

        self.step_latency_seconds = Histogram(
            "liquidity_agent_step_latency_seconds",
            "Latency of individual ledger operations",
            ["operation"],
            buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        # === RECOVERY METRICS ===
        self.recoveries_total = Counter(
            "liquidity_agent_recoveries_total",
            "Recovery chains run, by how they ended",
            ["flow", "outcome"],
            registry=self.registry,
        )

        self.last_activity_timestamp = Gauge(
            "liquidity_agent_last_activity_timestamp",
            "Unix timestamp of the last flow activity",
            registry=self.registry,
        )

    # === METRIC RECORDING METHODS ===

    def record_flow_started(self, flow: str):
        """Record a flow start"""
        with self._lock:
            self.flows_started_total.labels(flow=flow).inc()
            self.last_activity_timestamp.set(time.time())

    def record_flow_completed(self, flow: str, duration_seconds: float = 0.0):
        """Record a successful flow"""
        with self._lock:
            self.flows_completed_total.labels(flow=flow).inc()
            if duration_seconds > 0:
                self.flow_duration_seconds.labels(flow=flow).observe(duration_seconds)

    def record_flow_failed(self, flow: str, failed_step: str, duration_seconds: float = 0.0):
        """Record a failed flow"""
        with self._lock:
            self.flows_failed_total.labels(flow=flow, failed_step=failed_step).inc()
            if duration_seconds > 0:
                self.flow_duration_seconds.labels(flow=flow).observe(duration_seconds)

    def record_step(self, operation: str, success: bool, latency_seconds: float = 0.0):
        """Record one ledger operation"""
        with self._lock:
            outcome = "success" if success else "failure"
            self.steps_total.labels(operation=operation, outcome=outcome).inc()
            if latency_seconds > 0:
                self.step_latency_seconds.labels(operation=operation).observe(latency_seconds)

    def record_recovery(self, flow: str, outcome: str):
        """Record a recovery chain outcome (recovered, manual, exhausted, disabled)"""
        with self._lock:
            self.recoveries_total.labels(flow=flow, outcome=outcome).inc()

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ):
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"📊 Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        logger.info("📊 Metrics server stopped")

    async def _metrics_handler(self, request):
        """Handle metrics endpoint requests"""
        metrics_output = generate_latest(self.registry)
        # aiohttp rejects a content type that carries its own charset
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        """Handle health check endpoint"""
        return web.json_response({"status": "healthy", "service": "liquidity_agent_metrics"})

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get current metrics summary"""
        return {
            "metrics_available": True,
            "exposition_bytes": len(generate_latest(self.registry)),
            "timestamp": time.time(),
        }
