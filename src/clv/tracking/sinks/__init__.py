"""Replication targets for customer value records."""

from src.clv.tracking.sinks.base import (
    CustomerApi,
    CustomerApiError,
    DocumentStore,
    DocumentStoreError,
    SinkError,
    TrackingError,
)
from src.clv.tracking.sinks.document import SqlDocumentStore
from src.clv.tracking.sinks.http_api import HttpCustomerApi
from src.clv.tracking.sinks.local_cache import RecentItemsCache

__all__ = [
    "CustomerApi",
    "CustomerApiError",
    "DocumentStore",
    "DocumentStoreError",
    "HttpCustomerApi",
    "RecentItemsCache",
    "SinkError",
    "SqlDocumentStore",
    "TrackingError",
]
