"""Intermediate representation dataclasses for digests and aligned words.

WHY: Every pipeline stage reads and writes a piece of the same digest:
the cleaner produces speaker-tagged lines, the aligner produces timed
words, the editor flags section and chapter starts on those words. A
single set of typed dataclasses keeps the stages honest about what they
exchange, and gives the store one place to serialize from.

HOW: Six types form the model:
  WordRecord       : one aligned word with timing and structural flags
  AlignedTranscript: the ordered word list produced by alignment
  PreAlignLine     : one speaker-tagged line handed to the aligner
  DigestState      : named pipeline states (no bare integers)
  StageFailure     : which stage failed and why
  DigestRecord     : the persisted state of one digest

RULES:
- All times are float seconds
- WordRecord.start <= WordRecord.end
- Wire names (to_dict/from_dict) use the aligner's camelCase keys:
  alignedWord, sentenceNumber, startSection, startChapter
- speaker ids are strings ("0", "1", ...), matching the aligner output
- DigestState values are strings so records serialize cleanly to JSON
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class DigestState(str, enum.Enum):
    """Pipeline states of a digest.

    RULES:
    - created: record exists, raw transcript and video are on disk
    - cleaning: transcript cleaning (and audio extraction) in progress
    - extracting_audio: transcript cleaned, waiting on the audio
    - aligning: forced alignment running
    - ready: aligned transcript available to the editor
    - failed: a stage failed; see DigestRecord.failure
    """

    CREATED = "created"
    CLEANING = "cleaning"
    EXTRACTING_AUDIO = "extracting_audio"
    ALIGNING = "aligning"
    READY = "ready"
    FAILED = "failed"


PROCESSING_STATES = frozenset({
    DigestState.CLEANING,
    DigestState.EXTRACTING_AUDIO,
    DigestState.ALIGNING,
})


class Stage(str, enum.Enum):
    """Pipeline stages, used to scope errors and failures."""

    INGEST = "ingest"
    CLEAN = "clean"
    AUDIO = "audio"
    ALIGN = "align"
    SENTENCES = "sentences"
    SEGMENT = "segment"
    NOTIFY = "notify"

    def __str__(self) -> str:
        return self.value


@dataclass
class WordRecord:
    """A single aligned word.

    WHY: The editor works word by word: it seeks the video to a word's
    start, highlights the word being spoken, and lets the author start a
    new section or chapter at any word.

    RULES:
    - word keeps the original casing; aligned_word is the normalized form
    - sentence_number is non-decreasing along the transcript
    - start_section / start_chapter are set by the editor or by segmentation
    """

    word: str
    aligned_word: str
    start: float
    end: float
    speaker: str = "0"
    sentence_number: int = 0
    start_section: bool = False
    start_chapter: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "alignedWord": self.aligned_word,
            "start": self.start,
            "end": self.end,
            "speaker": self.speaker,
            "sentenceNumber": self.sentence_number,
            "startSection": self.start_section,
            "startChapter": self.start_chapter,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> WordRecord:
        word = str(data["word"])
        return cls(
            word=word,
            aligned_word=str(data.get("alignedWord") or word.upper()),
            start=float(data["start"]),
            end=float(data["end"]),
            speaker=str(data.get("speaker", "0")),
            sentence_number=int(data.get("sentenceNumber", 0)),
            start_section=bool(data.get("startSection", False)),
            start_chapter=bool(data.get("startChapter", False)),
        )


@dataclass
class AlignedTranscript:
    """Ordered, time-aligned words for one digest."""

    words: List[WordRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"words": [w.to_dict() for w in self.words]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AlignedTranscript:
        return cls(words=[WordRecord.from_dict(w) for w in data.get("words", [])])

    def text(self) -> str:
        return " ".join(w.word for w in self.words)


@dataclass
class PreAlignLine:
    """One speaker-tagged line of cleaned transcript, input to the aligner."""

    speaker: str
    line: str

    def to_dict(self) -> Dict[str, str]:
        return {"speaker": self.speaker, "line": self.line}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PreAlignLine:
        return cls(speaker=str(data["speaker"]), line=str(data["line"]))


@dataclass
class StageFailure:
    """The stage a digest failed in and the reason given to the user."""

    stage: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"stage": str(self.stage), "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StageFailure:
        return cls(stage=str(data["stage"]), reason=str(data["reason"]))


@dataclass
class DigestRecord:
    """The persisted state of one digest as it moves through the pipeline.

    WHY: The pipeline is resumable: every stage persists its output into
    this record before the next stage starts, so a crash or a failed
    aligner run only costs the work of the failing stage.

    HOW: Created by ingest in state CREATED, mutated by each stage via the
    store, serialized to JSON by to_dict()/from_dict().

    RULES:
    - id: hex UUID4, immutable
    - video_id / video_name: the YouTube id; file names derive from it
    - raw_trans_name: file name under raw_trans/ (cleaned text artifact)
    - audio_name: set once audio extraction succeeded
    - pre_align_trans: set once cleaning succeeded
    - align_trans: preliminary caption alignment after ingest, the forced
      alignment once READY
    - sent_sep_trans_name: file name under sentsep/, set by sentence grouping
    - failure: set while state is FAILED, cleared when a stage restarts
    - digest: the editor's document (title, sections, ...), opaque here
    """

    id: str
    state: DigestState
    video_id: str
    video_name: str
    raw_trans_name: Optional[str] = None
    title: str = ""
    video_length: Optional[float] = None
    audio_name: Optional[str] = None
    pre_align_trans: List[PreAlignLine] = field(default_factory=list)
    align_trans: Optional[AlignedTranscript] = None
    sent_sep_trans_name: Optional[str] = None
    failure: Optional[StageFailure] = None
    digest: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def is_ready(self) -> bool:
        return self.state == DigestState.READY

    def is_processing(self) -> bool:
        return self.state in PROCESSING_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "videoId": self.video_id,
            "videoName": self.video_name,
            "rawTransName": self.raw_trans_name,
            "title": self.title,
            "videoLength": self.video_length,
            "audioName": self.audio_name,
            "preAlignTrans": [line.to_dict() for line in self.pre_align_trans],
            "alignTrans": self.align_trans.to_dict() if self.align_trans else None,
            "sentSepTransName": self.sent_sep_trans_name,
            "failure": self.failure.to_dict() if self.failure else None,
            "digest": self.digest,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DigestRecord:
        align = data.get("alignTrans")
        failure = data.get("failure")
        return cls(
            id=data["id"],
            state=DigestState(data["state"]),
            video_id=data["videoId"],
            video_name=data.get("videoName") or data["videoId"],
            raw_trans_name=data.get("rawTransName"),
            title=data.get("title", ""),
            video_length=data.get("videoLength"),
            audio_name=data.get("audioName"),
            pre_align_trans=[PreAlignLine.from_dict(p) for p in data.get("preAlignTrans", [])],
            align_trans=AlignedTranscript.from_dict(align) if align else None,
            sent_sep_trans_name=data.get("sentSepTransName"),
            failure=StageFailure.from_dict(failure) if failure else None,
            digest=data.get("digest") or {},
            created_at=data.get("createdAt", time.time()),
            updated_at=data.get("updatedAt", time.time()),
        )
