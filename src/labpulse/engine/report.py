"""Plain-text lab report.

The report lists abnormal results first, since that is the section that
needs action, followed by normal results. A run that lost one or more
NDJSON streams is marked partial.

Usage:
    builder = ReportBuilder()
    builder.record(entry, classify(entry.observation))
    report = builder.render()
    print(report.text)
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from labpulse.engine.classifier import Verdict
from labpulse.models import CorrelatedObservation


def _format_value(value: float | None, unit: str) -> str:
    if value is None:
        return "N/A"
    text = str(int(value)) if value.is_integer() else repr(value)
    return f"{text} {unit}" if unit else text


def format_entry(entry: CorrelatedObservation, verdict: Verdict) -> str:
    """Render one report line.

    Example:
        "Glucose: 5.5 mmol/L. Reason: Within reference range, Patient: Jane Doe (ID: p1)"
    """
    obs = entry.observation
    return (
        f"{obs.code_text}: {_format_value(obs.value, obs.unit)}. "
        f"Reason: {verdict.reason.value}, "
        f"Patient: {entry.patient_name or 'Unknown'} (ID: {entry.patient_id or 'unknown'})"
    )


@dataclass(frozen=True)
class Report:
    """Rendered report.

    Attributes:
        generated_at: Timestamp shown in the header
        abnormal: Abnormal result lines in arrival order
        normal: Normal result lines in arrival order
        notes: Degradation notes; non-empty means partial results
    """

    generated_at: datetime
    abnormal: tuple[str, ...]
    normal: tuple[str, ...]
    notes: tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        """Whether some records may be missing."""
        return bool(self.notes)

    @property
    def text(self) -> str:
        """Report body as plain text."""
        lines = [f"Lab Test Results Summary (Generated: {self.generated_at.isoformat()})"]
        for note in self.notes:
            lines.append(f"NOTE: Partial results. {note}")
        body = "\n".join(lines)
        body += "\n\nAbnormal Results:\n" + "\n".join(self.abnormal)
        body += "\n\nNormal Results:\n" + "\n".join(self.normal)
        return body

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "abnormal": list(self.abnormal),
            "normal": list(self.normal),
            "notes": list(self.notes),
            "partial": self.partial,
        }


class ReportBuilder:
    """Accumulates classified observations into abnormal and normal sections.

    Args:
        generated_at: Header timestamp (default: now, UTC)
    """

    def __init__(self, generated_at: datetime | None = None) -> None:
        self.generated_at = generated_at or datetime.now(timezone.utc)
        self._abnormal: list[str] = []
        self._normal: list[str] = []
        self._notes: list[str] = []

    def record(self, entry: CorrelatedObservation, verdict: Verdict) -> str:
        """Append an entry to the section chosen by the verdict.

        Returns:
            The rendered line
        """
        line = format_entry(entry, verdict)
        if verdict.is_normal:
            self._normal.append(line)
        else:
            self._abnormal.append(line)
        return line

    def mark_partial(self, note: str) -> None:
        """Flag the report as partial with an explanatory note."""
        self._notes.append(note)

    @property
    def counts(self) -> tuple[int, int]:
        """(abnormal, normal) line counts so far."""
        return len(self._abnormal), len(self._normal)

    def render(self) -> Report:
        """Snapshot the current state. Repeated calls yield identical text."""
        return Report(
            generated_at=self.generated_at,
            abnormal=tuple(self._abnormal),
            normal=tuple(self._normal),
            notes=tuple(self._notes),
        )
