"""FHIR Bulk Data export client.

Implements the asynchronous request pattern of the Bulk Data Access API:
kick-off with `Prefer: respond-async`, poll the status URL from the
Content-Location header, read the completion manifest, then stream each
NDJSON output file.

API Documentation: https://hl7.org/fhir/uv/bulkdata/export.html

Usage:
    async with BulkExportClient.from_settings(settings, credential) as client:
        job = await client.initiate(group_id, ["Patient", "Observation"])
        manifest = await client.await_completion(job, poll_interval=30, timeout=3600)
        async for resource in client.stream_ndjson(manifest.entries[0].url):
            ...
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator

from labpulse.clients.auth import Credential
from labpulse.clients.base import BaseAsyncClient, parse_retry_after
from labpulse.config import Settings
from labpulse.errors import (
    ExportFailedError,
    ExportInitError,
    ExportTimeoutError,
    StreamError,
    TransientPollError,
)

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Lifecycle of an export job as seen by the client."""

    INITIATED = "initiated"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class ExportJob:
    """A kicked-off export, identified by its status URL."""

    status_url: str
    requested_at: datetime
    state: JobState = JobState.INITIATED
    attempts: int = 0


@dataclass(frozen=True)
class ManifestEntry:
    """One downloadable file of the completion manifest."""

    resource_type: str
    url: str
    count: int | None = None


@dataclass(frozen=True)
class Manifest:
    """Completion manifest of an export job.

    Attributes:
        entries: Output files in manifest order
        transaction_time: Server time the export reflects
        request: The kick-off request URL echoed by the server
        errors: OperationOutcome files reported by the server
    """

    entries: tuple[ManifestEntry, ...]
    transaction_time: str | None = None
    request: str | None = None
    errors: tuple[ManifestEntry, ...] = ()

    @classmethod
    def from_json(cls, body: Any) -> "Manifest":
        """Parse a manifest body of the form {"output": [{"type", "url"}, ...]}.

        Raises:
            ValueError: If the body is not a manifest
        """
        if not isinstance(body, dict) or not isinstance(body.get("output"), list):
            raise ValueError("Manifest has no output list")

        def _entries(items: list[Any]) -> tuple[ManifestEntry, ...]:
            parsed = []
            for item in items:
                if not isinstance(item, dict) or not item.get("type") or not item.get("url"):
                    raise ValueError(f"Malformed manifest entry: {item!r}")
                parsed.append(ManifestEntry(
                    resource_type=item["type"],
                    url=item["url"],
                    count=item.get("count"),
                ))
            return tuple(parsed)

        return cls(
            entries=_entries(body["output"]),
            transaction_time=body.get("transactionTime"),
            request=body.get("request"),
            errors=_entries(body.get("error") or []),
        )

    def entries_for(self, resource_type: str) -> list[ManifestEntry]:
        """Entries of one resource type, in manifest order."""
        return [e for e in self.entries if e.resource_type == resource_type]

    @property
    def resource_types(self) -> list[str]:
        """Distinct resource types in first-seen order."""
        return list(dict.fromkeys(e.resource_type for e in self.entries))


@dataclass(frozen=True)
class ExportStatus:
    """Result of one status poll."""

    complete: bool
    status_code: int
    progress: str | None = None
    retry_after: float | None = None
    manifest: Manifest | None = None


class BulkExportClient(BaseAsyncClient):
    """Async client for group-level bulk export.

    Every request carries the run's bearer credential. An expired
    credential raises AuthError before the request is sent.

    Args:
        base_url: FHIR base URL
        credential: Bearer credential for this run
        rate_limit: Max requests per second (default: 10)
        timeout: HTTP timeout in seconds (default: 30)
        max_retries: Kick-off retries on transient failures (default: 2)
    """

    def __init__(
        self,
        base_url: str,
        credential: Credential,
        rate_limit: int = 10,
        timeout: float = 30.0,
        max_retries: int = 2,
    ) -> None:
        super().__init__(
            base_url=base_url,
            headers={},
            rate_limit=rate_limit,
            timeout=timeout,
            max_retries=max_retries,
        )
        self.credential = credential

    @classmethod
    def from_settings(cls, settings: Settings, credential: Credential) -> "BulkExportClient":
        """Build a client from settings."""
        return cls(
            base_url=settings.fhir_base_url,
            credential=credential,
            rate_limit=settings.rate_limit,
            timeout=settings.http_timeout,
            max_retries=settings.http_max_retries,
        )

    def _auth_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = self.credential.authorization_header()
        if extra:
            headers.update(extra)
        return headers

    async def initiate(
        self,
        group_id: str,
        resource_types: list[str],
        type_filter: str | None = None,
    ) -> ExportJob:
        """Kick off a group export.

        401/403 and other client errors are raised immediately. Transient
        failures (429, 502-504, timeouts) are retried with backoff.

        Args:
            group_id: FHIR Group id
            resource_types: Values joined into the _type parameter
            type_filter: Optional _typeFilter value

        Returns:
            ExportJob holding the status URL

        Raises:
            ExportInitError: If the request fails or has no Content-Location
        """
        params: dict[str, Any] = {"_type": ",".join(resource_types)}
        if type_filter:
            params["_typeFilter"] = type_filter

        headers = self._auth_headers({
            "Accept": "application/fhir+json",
            "Prefer": "respond-async",
        })

        logger.info("Starting bulk export for Group %s (%s)", group_id, params["_type"])
        response = await self._send(
            "GET",
            f"/Group/{group_id}/$export",
            params=params,
            headers=headers,
            error_cls=ExportInitError,
            retry=True,
        )

        status_url = response.headers.get("Content-Location")
        if not status_url:
            raise ExportInitError(
                "Bulk export response is missing the Content-Location header",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        logger.info("Bulk export job started. Status URL: %s", status_url)
        return ExportJob(status_url=status_url, requested_at=datetime.now(timezone.utc))

    async def check_status(self, job: ExportJob) -> ExportStatus:
        """Poll the job status once.

        Returns:
            ExportStatus; complete=True carries the manifest

        Raises:
            TransientPollError: 429/5xx, timeouts and network errors
            ExportFailedError: Other error statuses or a malformed manifest
        """
        try:
            response = await self._send(
                "GET",
                job.status_url,
                headers=self._auth_headers({"Accept": "application/json"}),
                error_cls=TransientPollError,
            )
        except TransientPollError as e:
            code = e.status_code
            if code is not None and 400 <= code < 500 and code != 429:
                job.state = JobState.FAILED
                raise ExportFailedError(
                    f"Export job failed: {code}",
                    status_code=code,
                    response_body=e.response_body,
                ) from e
            raise

        progress = response.headers.get("X-Progress")
        retry_after = parse_retry_after(response.headers.get("Retry-After"))

        if response.status_code != 200:
            return ExportStatus(
                complete=False,
                status_code=response.status_code,
                progress=progress,
                retry_after=retry_after,
            )

        try:
            manifest = Manifest.from_json(response.json())
        except ValueError as e:
            job.state = JobState.FAILED
            raise ExportFailedError(
                f"Invalid completion manifest: {e}",
                status_code=response.status_code,
                response_body=response.text[:500],
            ) from e

        return ExportStatus(
            complete=True,
            status_code=response.status_code,
            progress=progress,
            manifest=manifest,
        )

    async def await_completion(
        self,
        job: ExportJob,
        poll_interval: float = 30.0,
        max_attempts: int | None = None,
        timeout: float | None = None,
        backoff_factor: float = 1.0,
        max_interval: float = 300.0,
    ) -> Manifest:
        """Poll until the job completes, fails, or the bound is exceeded.

        A failed poll (timeout, 5xx) does not end the wait: the remote job
        keeps running regardless. Retry-After, on a 202 or on a 429/503,
        overrides the interval for the next wait; otherwise the interval
        grows by backoff_factor up to max_interval. There is no wait after
        the last allowed poll.

        Args:
            job: Job returned by initiate()
            poll_interval: Seconds before the second poll
            max_attempts: Maximum number of polls
            timeout: Maximum seconds to wait
            backoff_factor: Interval multiplier per poll (1.0 = fixed)
            max_interval: Cap for the interval and for Retry-After

        Returns:
            The completion manifest

        Raises:
            ValueError: If neither max_attempts nor timeout is given
            ExportTimeoutError: If the bound is exceeded
            ExportFailedError: If the server reports the job as failed
        """
        if max_attempts is None and timeout is None:
            raise ValueError("await_completion needs max_attempts or timeout")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        interval = poll_interval
        max_interval = max(max_interval, poll_interval)
        job.state = JobState.POLLING

        while True:
            job.attempts += 1
            status: ExportStatus | None = None
            retry_after: float | None = None
            try:
                status = await self.check_status(job)
            except TransientPollError as e:
                retry_after = e.retry_after
                logger.warning(
                    "Export status check failed (attempt %d), retrying: %s",
                    job.attempts, e,
                )

            if status is not None:
                logger.info(
                    "Export status: %s",
                    {
                        "status": status.status_code,
                        "progress": status.progress,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                        "attempt": job.attempts,
                    },
                )
                if status.complete:
                    job.state = JobState.COMPLETED
                    logger.info(
                        "Export complete: %d output files, %d error files",
                        len(status.manifest.entries), len(status.manifest.errors),
                    )
                    return status.manifest
                retry_after = status.retry_after

            # No wait after the final poll
            if max_attempts is not None and job.attempts >= max_attempts:
                self._abandon(job, f"export not complete after {job.attempts} polls")

            delay = interval
            if retry_after is not None:
                delay = min(retry_after, max_interval)

            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._abandon(job, f"export not complete after {timeout:.0f}s")
                delay = min(delay, remaining)

            await self._wait(delay)
            interval = min(interval * backoff_factor, max_interval)

    def _abandon(self, job: ExportJob, reason: str) -> None:
        job.state = JobState.ABANDONED
        logger.error("Abandoning export %s: %s", job.status_url, reason)
        raise ExportTimeoutError(reason)

    async def _wait(self, delay: float) -> None:
        """Sleep between polls. Cancellation interrupts immediately."""
        await asyncio.sleep(delay)

    async def cancel(self, job: ExportJob) -> bool:
        """Ask the server to delete the job (best effort).

        Returns:
            True if the server accepted the DELETE
        """
        try:
            await self._send(
                "DELETE",
                job.status_url,
                headers=self._auth_headers(),
                error_cls=TransientPollError,
            )
        except TransientPollError as e:
            logger.warning("Failed to cancel export %s: %s", job.status_url, e)
            return False
        logger.info("Cancelled export %s", job.status_url)
        return True

    async def stream_ndjson(self, url: str) -> AsyncIterator[dict[str, Any]]:
        """Stream one NDJSON output file, yielding one resource per line.

        Lines are parsed as they arrive; the body is never held in memory.

        Raises:
            StreamError: On error status, transport failure or a malformed line
        """
        headers = self._auth_headers({"Accept": "application/fhir+ndjson"})
        try:
            async with self._stream("GET", url, headers=headers, error_cls=StreamError) as response:
                line_no = 0
                async for line in response.aiter_lines():
                    line_no += 1
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise StreamError(f"Malformed NDJSON at line {line_no}: {e}", url=url) from e
                    if not isinstance(record, dict):
                        raise StreamError(f"Line {line_no} is not a JSON object", url=url)
                    yield record
        except StreamError as e:
            if e.url is None:
                e.url = url
            raise
