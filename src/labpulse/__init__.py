"""LabPulse: FHIR bulk export lab result reports.

Exports Patients and lab Observations for a FHIR Group, classifies each
result against its reference range, and delivers an abnormal-first report.
"""

__version__ = "0.1.0"
