"""Stream ingestor: Manifest → NDJSON streams → sink.

Fans out over every manifest file of one resource type, hands each parsed
record to a sink as soon as it arrives, and keeps nothing itself. A failed
stream is logged and reported; sibling streams keep going.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Protocol

from labpulse.clients.bulk_export import Manifest, ManifestEntry
from labpulse.errors import StreamError

logger = logging.getLogger(__name__)

Sink = Callable[[dict[str, Any]], None]


class RecordSource(Protocol):
    """Anything that can stream NDJSON records from a URL."""

    def stream_ndjson(self, url: str) -> AsyncIterator[dict[str, Any]]:
        ...


@dataclass
class IngestResult:
    """Outcome of ingesting one resource type.

    Attributes:
        resource_type: The ingested type
        records: Records successfully handed to the sink
        streams: Number of manifest files for the type
        failures: One StreamError per failed stream
    """

    resource_type: str
    records: int = 0
    streams: int = 0
    failures: list[StreamError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True only if every stream ended cleanly."""
        return not self.failures


class StreamIngestor:
    """Concurrent NDJSON ingestion for manifest entries.

    Sinks are plain callables invoked on the event loop thread, so they
    never run concurrently with each other.

    Usage:
        ingestor = StreamIngestor(source=client, concurrency=4)
        result = await ingestor.stream_resource_type(manifest, "Patient", sink)
        if not result.complete:
            ...

    Args:
        source: Object exposing stream_ndjson(url)
        concurrency: Max streams open at once (default: 4)
    """

    def __init__(self, source: RecordSource, concurrency: int = 4) -> None:
        self.source = source
        self.concurrency = concurrency

    async def _ingest_entry(
        self,
        entry: ManifestEntry,
        sink: Sink,
        semaphore: asyncio.Semaphore,
    ) -> tuple[int, StreamError | None]:
        count = 0
        async with semaphore:
            try:
                async with aclosing(self.source.stream_ndjson(entry.url)) as records:
                    async for record in records:
                        try:
                            sink(record)
                        except Exception as e:
                            raise StreamError(
                                f"Sink rejected record {count + 1}: {e}", url=entry.url
                            ) from e
                        count += 1
            except StreamError as e:
                logger.error(
                    "%s stream %s failed after %d records: %s",
                    entry.resource_type, entry.url, count, e,
                )
                return count, e

        logger.info("%s stream %s: %d records", entry.resource_type, entry.url, count)
        return count, None

    async def stream_resource_type(
        self,
        manifest: Manifest,
        resource_type: str,
        sink: Sink,
    ) -> IngestResult:
        """Stream every manifest file of resource_type into sink.

        Returns once all streams have ended or failed. The result is
        best-effort unless result.complete is True.

        Args:
            manifest: Completion manifest
            resource_type: FHIR resource type to ingest
            sink: Called once per parsed record

        Returns:
            IngestResult with record count and per-stream failures

        Raises:
            LabPulseError: Any non-stream failure (an expired credential,
                say), after the sibling streams have been cancelled
        """
        entries = manifest.entries_for(resource_type)
        result = IngestResult(resource_type=resource_type, streams=len(entries))
        if not entries:
            logger.warning("No %s files in export manifest", resource_type)
            return result

        semaphore = asyncio.Semaphore(self.concurrency)
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(self._ingest_entry(entry, sink, semaphore))
                    for entry in entries
                ]
        except BaseExceptionGroup as eg:
            # Anything other than a StreamError is fatal; siblings are already cancelled
            raise eg.exceptions[0]
        outcomes = [task.result() for task in tasks]

        for count, error in outcomes:
            result.records += count
            if error is not None:
                result.failures.append(error)

        logger.info(
            "%s: %d records from %d/%d streams",
            resource_type, result.records,
            result.streams - len(result.failures), result.streams,
        )
        return result
