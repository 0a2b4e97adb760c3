"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"tenantsearch_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"tenantsearch_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SEARCH_LATENCY = Histogram(
	"tenantsearch_search_duration_seconds",
	"Search latency measured inside the service",
	["cached"],
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

CACHE_LOOKUPS = Counter(
	"tenantsearch_cache_lookups_total",
	"Search cache outcomes by tier (l1, l2, miss, bypass)",
	["tier"],
)

CACHE_ERRORS = Counter(
	"tenantsearch_cache_errors_total",
	"Persistent cache tier failures by operation",
	["op"],
)

REPLICATION_FAILURES = Counter(
	"tenantsearch_replication_failures_total",
	"Replica fan-out failures by replica index",
	["replica"],
)

DEPENDENCY_UP = Gauge(
	"tenantsearch_dependency_up",
	"Dependency reachability from the last health check (1 = reachable)",
	["dependency"],
)


def mark_dependency(name: str, ok: bool) -> None:
	DEPENDENCY_UP.labels(dependency=name).set(1 if ok else 0)


def observe_request(route: str, method: str, status: int, latency_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(latency_seconds)


__all__ = [
	"CACHE_ERRORS",
	"CACHE_LOOKUPS",
	"DEPENDENCY_UP",
	"REPLICATION_FAILURES",
	"REQUEST_COUNTER",
	"REQUEST_LATENCY",
	"SEARCH_LATENCY",
	"mark_dependency",
	"observe_request",
]
