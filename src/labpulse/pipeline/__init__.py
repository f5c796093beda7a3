"""Bulk export pipeline orchestration.

The pipeline coordinates one run:
1. Acquire a bearer token
2. Kick off and poll the bulk export
3. Stream Patients into the correlator
4. Stream Observations, classify, and build the report
5. Hand the report to the notifier

Components:
- PipelineRunner: Main coordinator (run_once() for schedulers)
- StreamIngestor: Manifest → NDJSON streams → sink
- Correlator: Patient map for Observation subjects
"""

from labpulse.pipeline.correlator import Correlator
from labpulse.pipeline.ingestor import IngestResult, StreamIngestor
from labpulse.pipeline.runner import PipelineRunner, RunResult, run_once

__all__ = [
    "Correlator",
    "IngestResult",
    "StreamIngestor",
    "PipelineRunner",
    "RunResult",
    "run_once",
]
