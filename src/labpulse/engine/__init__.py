"""Classification and reporting engine for LabPulse.

Modules:
    - classifier: Reference-range verdicts
    - report: Abnormal/normal report rendering
"""

from labpulse.engine.classifier import (
    Verdict,
    VerdictReason,
    classify,
)
from labpulse.engine.report import (
    Report,
    ReportBuilder,
    format_entry,
)

__all__ = [
    "Verdict",
    "VerdictReason",
    "classify",
    "Report",
    "ReportBuilder",
    "format_entry",
]
