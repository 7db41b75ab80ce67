"""HTTP infrastructure shared by the feed and roadmap clients."""

from changewatch.ingestion.http_client import HTTPClient, RetryConfig

__all__ = ["HTTPClient", "RetryConfig"]
