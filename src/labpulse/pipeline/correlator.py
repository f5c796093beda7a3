"""Patient/Observation correlation.

Patients are collected first into a mapping keyed by their relative
reference ("Patient/<id>"). Once that pass has fully drained the map is
sealed, and Observations resolve their subject against it.
"""

import logging
from typing import Any

from labpulse.models import PatientRecord

logger = logging.getLogger(__name__)


def normalize_reference(reference: str) -> str:
    """Reduce a reference to its "Type/id" form.

    Absolute references such as "https://host/fhir/Patient/123" and
    versioned ones ("Patient/123/_history/2") become "Patient/123".
    """
    parts = [p for p in reference.strip().split("/") if p]
    if "_history" in parts:
        parts = parts[: parts.index("_history")]
    if len(parts) < 2:
        return reference.strip()
    return f"{parts[-2]}/{parts[-1]}"


class Correlator:
    """Write-once-per-id Patient arena with a fixed phase order.

    Phase 1: add_patient() for every Patient record, then seal().
    Phase 2: resolve() for each Observation subject.

    Usage:
        correlator = Correlator()
        await ingestor.stream_resource_type(manifest, "Patient", correlator.add_patient)
        correlator.seal()
        patient = correlator.resolve("Patient/123")
    """

    def __init__(self) -> None:
        self._patients: dict[str, PatientRecord] = {}
        self._sealed = False
        self.skipped = 0

    def __len__(self) -> int:
        return len(self._patients)

    @property
    def sealed(self) -> bool:
        """Whether the Patient phase has ended."""
        return self._sealed

    def add_patient(self, resource: dict[str, Any]) -> None:
        """Sink for Patient records. Last write wins on duplicate ids.

        Records without an id are counted in `skipped` and ignored.

        Raises:
            RuntimeError: If called after seal()
        """
        if self._sealed:
            raise RuntimeError("Correlator is sealed; Patient phase has ended")

        try:
            patient = PatientRecord.from_resource(resource)
        except ValueError as e:
            self.skipped += 1
            logger.warning("Skipping Patient record: %s", e)
            return

        if patient.reference in self._patients:
            logger.debug("Duplicate %s, keeping latest", patient.reference)
        self._patients[patient.reference] = patient

    def seal(self) -> None:
        """End the Patient phase."""
        self._sealed = True
        logger.info("Correlator sealed with %d patients", len(self._patients))

    def resolve(self, reference: str) -> PatientRecord | None:
        """Look up the Patient an Observation points to.

        Returns:
            The PatientRecord, or None for unknown or empty references

        Raises:
            RuntimeError: If called before seal()
        """
        if not self._sealed:
            raise RuntimeError("Correlator is not sealed; Patient phase still open")
        if not reference:
            return None
        return self._patients.get(normalize_reference(reference))
