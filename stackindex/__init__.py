"""Goroutine stack-dump ingestion into Elasticsearch.

Submodules overview:
- config: Application settings (pydantic-settings) and the explicit PipelineConfig.
- schemas: Pydantic models for frames, records, documents and bulk actions.
- parser: Go stack dump text to goroutine records.
- timestamps: Capture instant and idle-minutes to event-time inference.
- documents: Record validation and document building.
- backend: Elasticsearch bulk client over requests.
- pipeline: Bounded buffer, delivery worker pool, retries and accounting.
- monitor: Completion monitor waiting for the pipeline to drain.
- cancellation: Cooperative cancellation token.
- errors: Exception hierarchy.
- obs: Observability utilities (OpenTelemetry spans).
- ingestion: Runnable import jobs (import_dump).
- cli: Command-line entrypoint.
"""

__version__ = "0.1.0"
