"""Lab result classification against reference ranges.

Decision rules, evaluated in order (first match wins):
    1. No reference range               -> abnormal, NO_RANGE
    2. Value, low or high missing       -> abnormal, INCOMPLETE_DATA
    3. low <= value <= high (inclusive) -> normal, WITHIN_RANGE
    4. Otherwise                        -> abnormal, OUTSIDE_RANGE

Missing means absent (None). A value or bound of exactly 0 is real data
and is compared like any other number.
"""

from dataclasses import dataclass
from enum import Enum

from labpulse.models import LabObservation


class VerdictReason(Enum):
    """Why an observation was classified the way it was."""

    NO_RANGE = "No reference range found"
    INCOMPLETE_DATA = "Incomplete data"
    WITHIN_RANGE = "Within reference range"
    OUTSIDE_RANGE = "Outside reference range"


@dataclass(frozen=True)
class Verdict:
    """Classification of one observation."""

    is_normal: bool
    reason: VerdictReason


def classify(observation: LabObservation) -> Verdict:
    """Classify an observation against its reference range.

    Pure and total: never raises, never performs I/O.
    """
    rng = observation.reference_range
    if rng is None:
        return Verdict(False, VerdictReason.NO_RANGE)

    value, low, high = observation.value, rng.low, rng.high
    if value is None or low is None or high is None:
        return Verdict(False, VerdictReason.INCOMPLETE_DATA)

    if low <= value <= high:
        return Verdict(True, VerdictReason.WITHIN_RANGE)
    return Verdict(False, VerdictReason.OUTSIDE_RANGE)
