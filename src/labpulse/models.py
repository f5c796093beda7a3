"""FHIR resource views used by the pipeline.

Only the fields the report needs are extracted; everything else in the
resource is ignored.
"""

from dataclasses import dataclass
from typing import Any


def _as_number(value: Any) -> float | None:
    """Return value as float if it is numeric, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _first(value: Any) -> dict[str, Any]:
    """First element of a FHIR list field, if it is an object."""
    if isinstance(value, list) and value:
        return _as_dict(value[0])
    return {}


def _display_name(resource: dict[str, Any]) -> str:
    first = _first(resource.get("name"))
    if _as_str(first.get("text")):
        return first["text"]
    given = first.get("given")
    given = " ".join(g for g in given if isinstance(g, str)) if isinstance(given, list) else ""
    family = _as_str(first.get("family"))
    return f"{given} {family}".strip()


@dataclass(frozen=True)
class PatientRecord:
    """Reference entity: a Patient as shown in the report."""

    id: str
    name: str
    gender: str | None = None
    birth_date: str | None = None

    @property
    def reference(self) -> str:
        """Relative FHIR reference used by Observation.subject."""
        return f"Patient/{self.id}"

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> "PatientRecord":
        """Build from a Patient resource. Fields of the wrong type read as absent.

        Raises:
            ValueError: If the resource has no usable id
        """
        patient_id = resource.get("id")
        if isinstance(patient_id, bool) or not isinstance(patient_id, (str, int)) or patient_id == "":
            raise ValueError(f"Patient resource has no usable id: {patient_id!r}")
        return cls(
            id=str(patient_id),
            name=_display_name(resource),
            gender=_as_str(resource.get("gender")) or None,
            birth_date=_as_str(resource.get("birthDate")) or None,
        )


@dataclass(frozen=True)
class ReferenceRange:
    """Numeric bounds of a reference range. Either bound may be absent."""

    low: float | None
    high: float | None


@dataclass(frozen=True)
class LabObservation:
    """Event entity: one lab Observation with its numeric result.

    Attributes:
        id: Observation id
        code_text: Test name (code.text, else first coding display)
        value: valueQuantity.value, None when absent or non-numeric
        unit: valueQuantity.unit
        subject_reference: Observation.subject.reference
        reference_range: First referenceRange element, None when absent
    """

    id: str
    code_text: str
    value: float | None
    unit: str
    subject_reference: str
    reference_range: ReferenceRange | None

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> "LabObservation":
        """Build from an Observation resource.

        Never raises: missing fields and fields of the wrong type both read
        as absent, so a malformed record still reaches the report.
        """
        code = _as_dict(resource.get("code"))
        code_text = _as_str(code.get("text"))
        if not code_text:
            code_text = _as_str(_first(code.get("coding")).get("display"))

        quantity = _as_dict(resource.get("valueQuantity"))
        subject = _as_dict(resource.get("subject"))

        reference_range = None
        ranges = resource.get("referenceRange")
        if ranges is not None:
            # A present but empty list still counts as "has a range"
            first = _first(ranges)
            reference_range = ReferenceRange(
                low=_as_number(_as_dict(first.get("low")).get("value")),
                high=_as_number(_as_dict(first.get("high")).get("value")),
            )

        observation_id = resource.get("id")
        return cls(
            id=str(observation_id) if isinstance(observation_id, (str, int)) else "",
            code_text=code_text or "Unknown Test",
            value=_as_number(quantity.get("value")),
            unit=_as_str(quantity.get("unit")),
            subject_reference=_as_str(subject.get("reference")),
            reference_range=reference_range,
        )


@dataclass(frozen=True)
class CorrelatedObservation:
    """An observation joined with its subject's display fields.

    patient_id and patient_name are empty when the subject reference did
    not resolve to a Patient in the export.
    """

    observation: LabObservation
    patient_id: str = ""
    patient_name: str = ""

    @classmethod
    def join(
        cls, observation: LabObservation, patient: PatientRecord | None
    ) -> "CorrelatedObservation":
        """Attach the patient's display fields, if any."""
        if patient is None:
            return cls(observation=observation)
        return cls(observation=observation, patient_id=patient.id, patient_name=patient.name)
