"""Automatic section suggestions for an aligned digest.

WHY: Authors start from suggested section breaks rather than an unbroken
transcript. The suggestions come from an external statistical segmenter
that works on a sentence-separated transcript, which itself may not exist
yet (the post-ready sentence step is best-effort and may have failed).

HOW: segment() makes sure the inputs exist, then runs the segmenter:
  1. No raw transcript on record → write the aligned words, minus pause
     markers, to a randomly named file under raw_trans/
  2. No sentence-separated transcript → regenerate it once and reload
     the record; still missing → PreconditionNotMet
  3. Run the segmenter on the sentence-separated file and parse its
     break line (see tools/segmenter.py)

RULES:
- At most one regeneration attempt per call
- Breaks are sentence numbers; apply_to_chain() flags the first word of
  each one as a section start
- Errors raised by the segmenter are re-raised with the digest id attached
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from video_digest.config import Settings
from video_digest.core.ir import DigestRecord, Stage
from video_digest.core.word_chain import WordChain
from video_digest.errors import DigestError, PersistenceFailure, PreconditionNotMet
from video_digest.pipeline.store import DigestStore
from video_digest.tools.segmenter import Segmenter

logger = logging.getLogger(__name__)

PAUSE_MARKER = "{p}"

_RETRY_MESSAGE = "error processing transcript - please try again later"


@dataclass
class SegmentationResult:
    breaks: List[int] = field(default_factory=list)
    raw_line: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"breaks": self.breaks, "rawLine": self.raw_line}


class SegmentationAdapter:
    """Prepares segmenter input and runs the segmenter for one digest."""

    def __init__(
        self,
        settings: Settings,
        store: DigestStore,
        segmenter: Segmenter,
        regenerate: Callable[[str], Optional[str]],
    ) -> None:
        self._settings = settings
        self._store = store
        self._segmenter = segmenter
        self._regenerate = regenerate

    def segment(self, digest_id: str) -> SegmentationResult:
        record = self._store.load(digest_id)
        if record.align_trans is None or not record.align_trans.words:
            raise PreconditionNotMet(
                "the video digest has no aligned transcript yet",
                digest_id=digest_id,
                stage=Stage.SEGMENT,
            )

        if not record.raw_trans_name:
            record = self._write_raw_transcript(record)

        if not record.sent_sep_trans_name:
            logger.info("Generating sentence-separated transcript for %s", digest_id)
            try:
                self._regenerate(digest_id)
            except DigestError as exc:
                logger.warning("Sentence separation failed for %s: %s", digest_id, exc)
            record = self._store.load(digest_id)
            if not record.sent_sep_trans_name:
                raise PreconditionNotMet(_RETRY_MESSAGE, digest_id=digest_id, stage=Stage.SEGMENT)

        ss_path = self._settings.sent_sep_file(record.sent_sep_trans_name)
        try:
            breaks, raw_line = self._segmenter.segment(ss_path)
        except DigestError as exc:
            exc.with_context(digest_id=digest_id)
            raise
        logger.info("Segmenter suggested %d breaks for %s", len(breaks), digest_id)
        return SegmentationResult(breaks=breaks, raw_line=raw_line)

    @staticmethod
    def apply_to_chain(chain: WordChain, breaks: List[int]) -> List[int]:
        return chain.apply_breaks(breaks)

    def _write_raw_transcript(self, record: DigestRecord) -> DigestRecord:
        words = record.align_trans.words if record.align_trans else []
        text = " ".join(w.word for w in words if w.word != PAUSE_MARKER)
        name = "{}.txt".format(uuid.uuid4().hex[:12])
        path = self._settings.raw_transcript_file(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(
                "unable to write the raw transcript", digest_id=record.id, stage=Stage.SEGMENT
            ) from exc
        return self._store.update(record.id, raw_trans_name=name)
