"""Pipeline orchestration components for document ingestion."""

from iqrchat.pipeline.ingestion_pipeline import IngestionPipeline
from iqrchat.pipeline.status_tracker import StatusTracker

__all__ = [
    "IngestionPipeline",
    "StatusTracker",
]
