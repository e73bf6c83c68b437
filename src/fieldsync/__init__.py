"""fieldsync -- offline caching and background-sync engine for field inspection apps.

This package implements the offline layer that sits between an inspection
front end and its backend: every outgoing request is routed through one of
three caching strategies, responses are stored in size-bounded cache tiers,
and mutating requests that fail while offline are queued durably and
replayed when connectivity returns.

Typical embedding::

    async with HttpFetcher(config.network) as fetcher:
        worker = OfflineWorker(config, blob_store, queue_backend, broadcaster, fetcher)
        response = await worker.dispatch(FetchEvent(request))

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for configuration and persisted records.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    worker: Event dispatcher owning the cache tiers and mutation queue.
    output: stdout/stderr formatting for the CLI.
"""

__version__ = "1.0.0"
