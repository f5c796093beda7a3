"""Pipeline runner: token → export → poll → ingest → classify → report → notify.

One call to run() is one complete, self-contained execution: a fresh
credential, export job, Patient map and report are created and dropped at
the end. Fatal errors (auth, kick-off, failed or timed-out export) abort
before anything is sent. Failed NDJSON streams only mark the report partial.

The whole run is bounded by settings.run_timeout_seconds, and cancelling the
task running it stops the poll loop and any open streams.

Usage:
    runner = PipelineRunner(settings)
    result = await runner.run()

    # or, from a scheduler:
    from labpulse.pipeline.runner import run_once
    run_once()
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from labpulse.clients.auth import Credential, TokenProvider
from labpulse.clients.bulk_export import BulkExportClient, Manifest
from labpulse.config import Settings
from labpulse.engine import Report, ReportBuilder, classify
from labpulse.errors import ExportTimeoutError, NotificationError, RunTimeoutError
from labpulse.logging_utils import configure_logging
from labpulse.models import CorrelatedObservation, LabObservation
from labpulse.notify import DeliveryResult, Notifier, notifier_from_settings
from labpulse.pipeline.correlator import Correlator
from labpulse.pipeline.ingestor import IngestResult, StreamIngestor

logger = logging.getLogger(__name__)

PATIENT_TYPE = "Patient"
OBSERVATION_TYPE = "Observation"


@dataclass
class RunResult:
    """Everything one run produced."""

    report: Report
    patients: IngestResult
    observations: IngestResult
    unresolved_subjects: int
    delivery: DeliveryResult

    @property
    def delivered(self) -> bool:
        """Whether the notifier accepted the report."""
        return self.delivery.delivered


class PipelineRunner:
    """Orchestrates one end-to-end lab report run.

    Args:
        settings: Configuration for every component
        notifier: Report delivery (default: e-mail if SMTP is configured,
            else console)
    """

    def __init__(self, settings: Settings, notifier: Notifier | None = None) -> None:
        self.settings = settings
        self.notifier = notifier or notifier_from_settings(settings)

    def _token_provider(self) -> TokenProvider:
        return TokenProvider.from_settings(self.settings)

    def _export_client(self, credential: Credential) -> BulkExportClient:
        return BulkExportClient.from_settings(self.settings, credential)

    async def run(self) -> RunResult:
        """Run the pipeline once.

        Returns:
            RunResult with the report and delivery outcome

        Raises:
            AuthError: Token could not be obtained
            ExportInitError: Export could not be started
            ExportFailedError: Server reported the export as failed
            ExportTimeoutError: Export did not complete within its bound
            RunTimeoutError: The run exceeded run_timeout_seconds
        """
        logger.info("Initiating lab report generation process")
        try:
            async with asyncio.timeout(self.settings.run_timeout_seconds):
                report, patients, observations, unresolved = await self._build_report()
        except TimeoutError as e:
            raise RunTimeoutError(
                f"Run exceeded {self.settings.run_timeout_seconds:.0f}s deadline"
            ) from e

        delivery = await self._deliver(report)
        logger.info("Report delivery status: %s", delivery)
        return RunResult(
            report=report,
            patients=patients,
            observations=observations,
            unresolved_subjects=unresolved,
            delivery=delivery,
        )

    async def _build_report(self) -> tuple[Report, IngestResult, IngestResult, int]:
        async with self._token_provider() as provider:
            credential = await provider.acquire_token()

        async with self._export_client(credential) as client:
            manifest = await self._export(client)

            ingestor = StreamIngestor(source=client, concurrency=self.settings.stream_concurrency)
            correlator = Correlator()
            builder = ReportBuilder()
            unresolved = 0

            patients = await ingestor.stream_resource_type(
                manifest, PATIENT_TYPE, correlator.add_patient
            )
            correlator.seal()

            def on_observation(resource: dict[str, Any]) -> None:
                nonlocal unresolved
                observation = LabObservation.from_resource(resource)
                patient = correlator.resolve(observation.subject_reference)
                if patient is None:
                    unresolved += 1
                builder.record(
                    CorrelatedObservation.join(observation, patient),
                    classify(observation),
                )

            observations = await ingestor.stream_resource_type(
                manifest, OBSERVATION_TYPE, on_observation
            )

        for result in (patients, observations):
            if not result.complete:
                builder.mark_partial(
                    f"{len(result.failures)} of {result.streams} "
                    f"{result.resource_type} files could not be read."
                )

        abnormal, normal = builder.counts
        logger.info(
            "Classified %d observations (%d abnormal, %d normal, %d without a known patient)",
            observations.records, abnormal, normal, unresolved,
        )
        return builder.render(), patients, observations, unresolved

    async def _export(self, client: BulkExportClient) -> Manifest:
        settings = self.settings
        job = await client.initiate(
            settings.fhir_group_id,
            settings.resource_types,
            settings.export_type_filter,
        )
        try:
            return await client.await_completion(
                job,
                poll_interval=settings.poll_interval_seconds,
                max_attempts=settings.max_poll_attempts,
                timeout=settings.export_timeout_seconds,
                backoff_factor=settings.poll_backoff_factor,
                max_interval=settings.poll_max_interval_seconds,
            )
        except ExportTimeoutError:
            await client.cancel(job)
            raise

    async def _deliver(self, report: Report) -> DeliveryResult:
        try:
            return await self.notifier.send(report.text)
        except NotificationError as e:
            logger.error("Report delivery failed: %s", e)
            return DeliveryResult(delivered=False, detail=str(e))


def run_once() -> RunResult:
    """Run the pipeline once with settings from the environment.

    Entry point for external schedulers (cron, systemd timers, ...).
    Each call is independent; calls must not overlap. Ctrl-C cancels the
    run and propagates KeyboardInterrupt once it has unwound.
    """
    settings = Settings()
    configure_logging(settings.log_level)
    return asyncio.run(PipelineRunner(settings).run())
