"""Digest pipeline: persistence, coordination and stage orchestration.

HOW: store.py persists DigestRecords; cache.py and barrier.py are the two
small concurrency helpers; orchestrator.py drives the stages; segmentation.py
produces section suggestions; notify.py tells the author the digest is ready.
"""

from video_digest.pipeline.orchestrator import PipelineOrchestrator, StatusReport
from video_digest.pipeline.segmentation import SegmentationAdapter, SegmentationResult
from video_digest.pipeline.store import DigestStore

__all__ = [
    "DigestStore",
    "PipelineOrchestrator",
    "SegmentationAdapter",
    "SegmentationResult",
    "StatusReport",
]
