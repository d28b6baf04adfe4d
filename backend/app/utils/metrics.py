"""Prometheus metrics for ingestion, retrieval and chat."""

from prometheus_client import Counter, Histogram

# Ingestion metrics
documents_processed_total = Counter(
    "documents_processed_total",
    "Documents that reached a terminal status",
    ["status"],
)

extraction_strategy_total = Counter(
    "extraction_strategy_total",
    "Extraction strategy that produced a document's text",
    ["strategy"],
)

ingestion_latency_ms = Histogram(
    "ingestion_latency_ms",
    "End-to-end document processing latency in milliseconds",
    ["status"],
    buckets=[100, 500, 1000, 5000, 15000, 60000, 180000, 600000],
)

chunks_indexed_total = Counter(
    "chunks_indexed_total",
    "Chunks written by the indexing writer",
)

# Retrieval metrics
retrieval_results = Histogram(
    "retrieval_results",
    "Chunks returned per retrieval",
    buckets=[0, 1, 2, 3, 5, 10, 20],
)

retrieval_errors_total = Counter(
    "retrieval_errors_total",
    "Retrievals degraded to empty context",
)

# Chat metrics
chat_streams_total = Counter(
    "chat_streams_total",
    "Chat streams by outcome",
    ["outcome"],
)


class PipelineMetrics:
    """Interface for pipeline metrics (no-op default)."""

    def record_document(self, status: str, latency_ms: float) -> None:
        """Record a document reaching a terminal status."""
        pass

    def inc_strategy(self, strategy: str) -> None:
        """Increment extraction strategy usage."""
        pass

    def inc_chunks(self, count: int) -> None:
        """Increment indexed chunk counter."""
        pass

    def record_retrieval(self, result_count: int) -> None:
        """Record number of chunks returned by a retrieval."""
        pass

    def inc_retrieval_error(self) -> None:
        """Increment degraded retrieval counter."""
        pass

    def inc_chat_stream(self, outcome: str) -> None:
        """Increment chat stream outcome counter."""
        pass


class PrometheusPipelineMetrics(PipelineMetrics):
    """Prometheus-based pipeline metrics implementation."""

    def record_document(self, status: str, latency_ms: float) -> None:
        documents_processed_total.labels(status=status).inc()
        ingestion_latency_ms.labels(status=status).observe(latency_ms)

    def inc_strategy(self, strategy: str) -> None:
        extraction_strategy_total.labels(strategy=strategy).inc()

    def inc_chunks(self, count: int) -> None:
        chunks_indexed_total.inc(count)

    def record_retrieval(self, result_count: int) -> None:
        retrieval_results.observe(result_count)

    def inc_retrieval_error(self) -> None:
        retrieval_errors_total.inc()

    def inc_chat_stream(self, outcome: str) -> None:
        chat_streams_total.labels(outcome=outcome).inc()
