"""API client layer for LabPulse.

Async HTTP clients for the FHIR backend:
- TokenProvider: SMART Backend Services token exchange
- BulkExportClient: $export kick-off, status polling, NDJSON streaming
"""

from labpulse.clients.base import BaseAsyncClient, RateLimiter
from labpulse.clients.auth import Credential, TokenProvider
from labpulse.clients.bulk_export import (
    BulkExportClient,
    ExportJob,
    ExportStatus,
    JobState,
    Manifest,
    ManifestEntry,
)

__all__ = [
    "BaseAsyncClient",
    "RateLimiter",
    "Credential",
    "TokenProvider",
    "BulkExportClient",
    "ExportJob",
    "ExportStatus",
    "JobState",
    "Manifest",
    "ManifestEntry",
]
