from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

requests_total = Counter(
    "llm_requests_total",
    "Total completion requests handled per backend variant",
    labelnames=["variant", "status"],
)

request_latency_seconds = Histogram(
    "llm_request_latency_seconds",
    "Completion latency from stream open to final transcript",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["variant"],
)

stream_chunks_total = Counter(
    "llm_stream_chunks_total",
    "Streamed chunks consumed",
    labelnames=["variant"],
)

stream_failures_total = Counter(
    "llm_stream_failures_total",
    "Streams terminated early by a chunk decode or transport error",
    labelnames=["variant"],
)

dispatch_inflight = Gauge(
    "llm_dispatch_inflight",
    "Requests currently in flight through the dispatch broker",
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
