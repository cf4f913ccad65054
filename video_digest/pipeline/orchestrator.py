"""Multi-stage digest pipeline: ingest → clean + audio → align → ready.

WHY: Turning a YouTube video and a transcript into an editable, word-aligned
digest takes several external programs (yt-dlp, ffmpeg, the forced aligner,
the sentence and segmentation scripts), each slow and each able to fail.
The orchestrator runs them in order, persists every intermediate result so
a failure only costs the failing stage, and reports where things stand.

HOW: Five stages, each persisting into the DigestRecord before returning:
  1. ingest()         : validate the video, download it, store the raw
                        transcript (upload or auto captions), state CREATED
  2. _clean()         : SRT → prose, clean and split into speaker lines
  3. _extract_audio() : ffmpeg to 16-bit PCM WAV
  4. align()          : forced aligner over the audio and cleaned lines
  5. _post_ready()    : sentence separation + notification, best-effort

advance() runs stages 2 and 3 concurrently on a thread pool. Each branch
arrives at a JoinBarrier(parties=2) when done; the branch whose arrival
completes the barrier runs stage 4 on its own thread. advance() returns a
Future right away, resolving to the READY record or to the stage error.

RULES:
- A stage failure sets state FAILED with a StageFailure(stage, reason) and
  keeps every field already persisted; align() can be re-run from FAILED
- Stage 4 starts at most once per advance(), and never after a failure
- State never moves from FAILED or ALIGNING back to a waiting state
- _post_ready failures are logged and never roll back READY
- Tool calls are argument vectors run through ProcessRunner; nothing is
  passed through a shell
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from video_digest.config import Settings
from video_digest.core.captions import parse_caption_document
from video_digest.core.ir import (
    AlignedTranscript,
    DigestRecord,
    DigestState,
    Stage,
    StageFailure,
)
from video_digest.core.normalizer import clean_and_segment, is_subtitle_numbered, srt_to_text
from video_digest.core.word_chain import WordChain
from video_digest.errors import (
    DigestError,
    DigestNotFound,
    ExternalToolFailure,
    PersistenceFailure,
    PreconditionNotMet,
    SourceNotFound,
    SourceTooLarge,
    UnsupportedFormat,
)
from video_digest.pipeline.barrier import JoinBarrier
from video_digest.pipeline.cache import DigestCache
from video_digest.pipeline.notify import LogNotifier, Notifier, WebhookNotifier
from video_digest.pipeline.segmentation import SegmentationAdapter, SegmentationResult
from video_digest.pipeline.store import DigestStore
from video_digest.tools.aligner import ForcedAligner
from video_digest.tools.ffmpeg import Transcoder
from video_digest.tools.runner import ProcessRunner
from video_digest.tools.segmenter import Segmenter, SentenceSeparator
from video_digest.tools.video_source import VideoInfo, VideoSource, extract_video_id

logger = logging.getLogger(__name__)

# Status messages shown to the author
MSG_PROCESSING = "video digest is processing"
MSG_READY = "video digest is ready for editing"
MSG_CREATED = "video digest is waiting for the transcript to be confirmed"
MSG_NOT_FOUND = "unable to load the video digest"

_NOT_TEXT_MESSAGE = "encountered a problem processing the transcript: is it a plain text file?"


@dataclass
class StatusReport:
    """Answer to "where is this digest?" for polling clients."""

    digest_id: str
    state: Optional[DigestState]
    message: str
    failure: Optional[StageFailure] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.digest_id,
            "state": self.state.value if self.state else None,
            "message": self.message,
            "failure": self.failure.to_dict() if self.failure else None,
        }


def _settle(done: Future, lock: threading.Lock, result: Any = None, exc: Optional[BaseException] = None) -> None:
    """Resolve ``done`` unless the other branch already did."""
    with lock:
        if done.done():
            return
        if exc is not None:
            done.set_exception(exc)
        else:
            done.set_result(result)


class PipelineOrchestrator:
    """Runs and tracks digests through the processing pipeline.

    Every collaborator can be injected; anything left out is built from
    ``settings``. Tests inject a fake ProcessRunner so no real tool runs.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[DigestStore] = None,
        runner: Optional[ProcessRunner] = None,
        video_source: Optional[VideoSource] = None,
        transcoder: Optional[Transcoder] = None,
        aligner: Optional[ForcedAligner] = None,
        sentence_separator: Optional[SentenceSeparator] = None,
        segmenter: Optional[Segmenter] = None,
        notifier: Optional[Notifier] = None,
        executor: Optional[Executor] = None,
        cache: Optional[DigestCache] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        s = self.settings
        s.ensure_dirs()
        runner = runner or ProcessRunner()

        self.store = store or DigestStore(s.digests_dir)
        self.cache = cache if cache is not None else DigestCache(s.cache_max_entries)
        self.store.add_listener(self.cache.invalidate)

        self.video_source = video_source or VideoSource(
            runner, s.videos_dir, s.ytdlp_bin, s.caption_language, s.download_timeout_s
        )
        self.transcoder = transcoder or Transcoder(
            runner, s.ffmpeg_bin, s.ffprobe_bin, s.use_nice, s.transcode_timeout_s
        )
        self.aligner = aligner or ForcedAligner(
            runner, s.python_bin, s.align_script, s.use_nice, s.align_timeout_s
        )
        self.sentence_separator = sentence_separator or SentenceSeparator(
            runner, s.python_bin, s.sentences_script,
            cwd=s.utils_dir, use_nice=s.use_nice, timeout=s.segment_timeout_s,
        )
        self.segmenter = segmenter or Segmenter(
            runner, s.python_bin, s.segment_script, s.segment_config,
            cwd=s.analysis_dir, timeout=s.segment_timeout_s,
        )
        if notifier is None:
            notifier = WebhookNotifier(s.notify_webhook_url) if s.notify_webhook_url else LogNotifier()
        self.notifier = notifier
        self.segmentation = SegmentationAdapter(
            s, self.store, self.segmenter, regenerate=self.separate_sentences
        )

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(2, s.pipeline_workers), thread_name_prefix="digest"
        )
        self._settle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> PipelineOrchestrator:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Stage 1: lookup and ingest
    # ------------------------------------------------------------------

    def lookup_video(self, url: str) -> VideoInfo:
        """Resolve a YouTube URL to its metadata, enforcing the length limit."""
        info = self.video_source.lookup(extract_video_id(url))
        self._check_length(info.duration_s)
        return info

    def ingest(
        self,
        video_id: str,
        title: Optional[str] = None,
        transcript_path: Optional[Path] = None,
        use_captions: bool = False,
    ) -> DigestRecord:
        """Register a new digest for ``video_id`` in state CREATED.

        Args:
            video_id: YouTube video id.
            title: Digest title; defaults to the video title.
            transcript_path: Uploaded transcript (plain text or SRT).
            use_captions: Use the video's auto captions instead of an upload.

        Raises:
            SourceNotFound: unknown video or missing upload.
            SourceTooLarge: video too long or upload too big.
            UnsupportedFormat: captions requested but none available.
        """
        if transcript_path is None and not use_captions:
            raise PreconditionNotMet(
                "provide a transcript file or use the video captions", stage=Stage.INGEST
            )
        if transcript_path is not None:
            self._check_upload(Path(transcript_path))

        info = self.video_source.lookup(video_id)
        self._check_length(info.duration_s)
        download = self.video_source.download(video_id)
        video_length = self.transcoder.read_duration(download.video_path)
        self._check_length(video_length)

        digest_id = self.store.new_id()
        alignment: Optional[AlignedTranscript] = None
        if transcript_path is not None:
            raw_name = "{}.txt".format(digest_id)
            content = None
        else:
            if download.caption_path is None:
                raise UnsupportedFormat(
                    "no captions are available for this video", stage=Stage.INGEST
                )
            captions = parse_caption_document(self._read_text(download.caption_path, Stage.INGEST))
            raw_name = "{}.txt".format(video_id)
            content = captions.plain_text
            alignment = captions.alignment if captions.alignment.words else None

        raw_path = self.settings.raw_transcript_file(raw_name)
        created_artifact = not raw_path.exists()
        try:
            if content is None:
                shutil.copyfile(str(transcript_path), str(raw_path))
            else:
                raw_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(
                "unable to store the transcript", stage=Stage.INGEST
            ) from exc

        record = DigestRecord(
            id=digest_id,
            state=DigestState.CREATED,
            video_id=video_id,
            video_name=video_id,
            raw_trans_name=raw_name,
            title=title or info.title,
            video_length=video_length,
            align_trans=alignment,
            digest={"title": title or info.title},
        )
        try:
            self.store.create(record)
        except DigestError:
            if created_artifact:
                raw_path.unlink()
            raise
        return record

    def _check_length(self, duration_s: Optional[float]) -> None:
        limit = self.settings.max_video_length_s
        if duration_s is not None and limit > 0 and duration_s > limit:
            raise SourceTooLarge(
                "Video length exceeds {:g} minutes".format(limit / 60), stage=Stage.INGEST
            )

    def _check_upload(self, path: Path) -> None:
        if not path.is_file():
            raise SourceNotFound(
                "transcript file not found: {}".format(path), stage=Stage.INGEST
            )
        limit = self.settings.max_transcript_upload_bytes
        if limit > 0 and path.stat().st_size > limit:
            raise SourceTooLarge(
                "transcript exceeds {} bytes".format(limit), stage=Stage.INGEST
            )

    @staticmethod
    def _read_text(path: Path, stage: Stage) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise UnsupportedFormat(_NOT_TEXT_MESSAGE, stage=stage) from exc
        except FileNotFoundError as exc:
            raise PreconditionNotMet(
                "the transcript file is missing: {}".format(path), stage=stage
            ) from exc
        except OSError as exc:
            raise PersistenceFailure(
                "unable to read {}".format(path), stage=stage
            ) from exc

    # ------------------------------------------------------------------
    # Stages 2 and 3: clean + audio, joined by a barrier
    # ------------------------------------------------------------------

    def advance(self, digest_id: str, confirm: bool = True) -> Future:
        """Start cleaning and audio extraction; alignment follows on its own.

        Returns a Future resolving to the READY record, or raising the
        error of the first stage that failed.
        """
        if not confirm:
            raise PreconditionNotMet(
                "the transcript must be confirmed before processing",
                digest_id=digest_id, stage=Stage.CLEAN,
            )
        record = self.store.load(digest_id)
        if not record.raw_trans_name or not self.settings.raw_transcript_file(record.raw_trans_name).is_file():
            raise PreconditionNotMet(
                "the raw transcript is missing", digest_id=digest_id, stage=Stage.CLEAN
            )
        if not self.video_source.video_path(record.video_name).is_file():
            raise PreconditionNotMet(
                "the video file is missing", digest_id=digest_id, stage=Stage.AUDIO
            )

        def start(current: DigestRecord) -> None:
            if current.is_processing():
                raise PreconditionNotMet(
                    "the video digest is currently processing", digest_id=digest_id
                )
            current.state = DigestState.CLEANING
            current.failure = None

        self.store.update(digest_id, mutate=start)
        logger.info("Advancing digest %s", digest_id)

        barrier = JoinBarrier(parties=2)
        done: Future = Future()
        self._executor.submit(self._run_branch, digest_id, Stage.CLEAN, self._clean, barrier, done)
        self._executor.submit(self._run_branch, digest_id, Stage.AUDIO, self._extract_audio, barrier, done)
        return done

    def _run_branch(
        self,
        digest_id: str,
        stage: Stage,
        work: Callable[[str], None],
        barrier: JoinBarrier,
        done: Future,
    ) -> None:
        """Run one pre-alignment stage, then align if this arrival is last."""
        try:
            work(digest_id)
        except Exception as exc:
            error = self._fail(digest_id, stage, exc)
            barrier.arrive()
            _settle(done, self._settle_lock, exc=error)
            return

        if not barrier.arrive():
            self._mark_waiting(digest_id, stage)
            return

        try:
            record = self.store.load(digest_id)
            if record.state == DigestState.FAILED:
                logger.info("Digest %s failed in a parallel stage; not aligning", digest_id)
                return
            self._check_alignable(record)
        except Exception as exc:
            _settle(done, self._settle_lock, exc=self._fail(digest_id, Stage.ALIGN, exc))
            return

        try:
            record = self._align(digest_id, joined=True)
        except Exception as exc:
            _settle(done, self._settle_lock, exc=exc)
            return
        _settle(done, self._settle_lock, result=record)

    def _mark_waiting(self, digest_id: str, finished: Stage) -> None:
        def mutate(record: DigestRecord) -> None:
            if record.state == DigestState.CLEANING and finished == Stage.CLEAN:
                record.state = DigestState.EXTRACTING_AUDIO

        try:
            self.store.update(digest_id, mutate=mutate)
        except DigestError:
            logger.exception("Could not record waiting state for digest %s", digest_id)

    def _clean(self, digest_id: str) -> None:
        record = self.store.load(digest_id)
        path = self.settings.raw_transcript_file(record.raw_trans_name or "")
        raw = self._read_text(path, Stage.CLEAN)
        if is_subtitle_numbered(raw):
            raw = srt_to_text(raw)
            try:
                path.write_text(raw, encoding="utf-8")
            except OSError as exc:
                raise PersistenceFailure(
                    "unable to rewrite the transcript", stage=Stage.CLEAN
                ) from exc
        lines = clean_and_segment(raw)
        if not lines:
            raise UnsupportedFormat(_NOT_TEXT_MESSAGE, stage=Stage.CLEAN)
        self.store.update(digest_id, pre_align_trans=lines)
        logger.info("Cleaned digest %s into %d lines", digest_id, len(lines))

    def _extract_audio(self, digest_id: str) -> None:
        record = self.store.load(digest_id)
        audio_name = record.video_name
        self.transcoder.extract_audio(
            self.video_source.video_path(record.video_name),
            self.settings.audio_file(audio_name),
        )
        self.store.update(digest_id, audio_name=audio_name)

    # ------------------------------------------------------------------
    # Stage 4: alignment
    # ------------------------------------------------------------------

    def align(self, digest_id: str) -> DigestRecord:
        """Run forced alignment and mark the digest READY.

        Also the resume point after an alignment failure. Refused while the
        digest is processing, so a retry never overlaps a running advance().
        """
        return self._align(digest_id, joined=False)

    def _align(self, digest_id: str, joined: bool) -> DigestRecord:
        def start(record: DigestRecord) -> None:
            if not joined:
                self._check_idle(record)
            self._check_alignable(record)
            record.state = DigestState.ALIGNING
            record.failure = None

        record = self.store.update(digest_id, mutate=start)
        try:
            aligned = self._run_aligner(record)
            record = self.store.update(
                digest_id, state=DigestState.READY, align_trans=aligned, failure=None
            )
        except Exception as exc:
            error = self._fail(digest_id, Stage.ALIGN, exc)
            if error is exc:
                raise
            raise error from exc

        logger.info("Digest %s is ready (%d words)", digest_id, len(aligned.words))
        self._post_ready(record)
        return record

    def retry_alignment(self, digest_id: str) -> Future:
        """Validate, then re-run alignment in the background."""
        record = self.store.load(digest_id)
        self._check_idle(record)
        self._check_alignable(record)
        return self._executor.submit(self.align, digest_id)

    @staticmethod
    def _check_idle(record: DigestRecord) -> None:
        if record.is_processing():
            raise PreconditionNotMet(
                "the video digest is currently processing", digest_id=record.id, stage=Stage.ALIGN
            )

    def _check_alignable(self, record: DigestRecord) -> None:
        if record.state == DigestState.ALIGNING:
            raise PreconditionNotMet(
                "the video digest is currently aligning", digest_id=record.id, stage=Stage.ALIGN
            )
        if not record.pre_align_trans:
            raise PreconditionNotMet(
                "the transcript has not been cleaned yet", digest_id=record.id, stage=Stage.ALIGN
            )
        if not record.audio_name or not self.settings.audio_file(record.audio_name).is_file():
            raise PreconditionNotMet(
                "the audio has not been extracted yet", digest_id=record.id, stage=Stage.ALIGN
            )

    def _run_aligner(self, record: DigestRecord) -> AlignedTranscript:
        tmp = self.settings.tmp_dir
        prealign = tmp / "{}.json".format(record.video_name)
        output = tmp / "{}_aligned.json".format(record.audio_name)
        workdir = tmp / record.video_name

        try:
            prealign.write_text(
                json.dumps([line.to_dict() for line in record.pre_align_trans]),
                encoding="utf-8",
            )
        except OSError as exc:
            raise PersistenceFailure(
                "error writing the pre-alignment transcript", stage=Stage.ALIGN
            ) from exc
        try:
            workdir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExternalToolFailure(
                Stage.ALIGN, "system error creating the aligned transcript"
            ) from exc

        aligned = self.aligner.align(
            self.settings.audio_file(record.audio_name or record.video_name),
            prealign,
            output,
            workdir,
        )
        # The aligner can leave the first word without the opening speaker.
        aligned.words[0].speaker = "0"
        return aligned

    # ------------------------------------------------------------------
    # Stage 5: post-ready
    # ------------------------------------------------------------------

    def _post_ready(self, record: DigestRecord) -> None:
        try:
            self._executor.submit(self._post_ready_work, record.id)
        except RuntimeError:
            logger.warning("Executor shut down; skipping post-ready steps for %s", record.id)

    def _post_ready_work(self, digest_id: str) -> None:
        try:
            self.separate_sentences(digest_id)
        except Exception:
            logger.exception("Sentence separation failed for digest %s", digest_id)
        try:
            self.notifier.notify(self.store.load(digest_id))
        except Exception:
            logger.exception("Notification failed for digest %s", digest_id)

    def separate_sentences(self, digest_id: str) -> Optional[str]:
        """Run the sentence-separation script; returns the stored file name.

        Returns None (and leaves the record untouched) when the script
        fails or writes nothing.
        """
        record = self.store.load(digest_id)
        if record.align_trans is None or not record.align_trans.words:
            raise PreconditionNotMet(
                "the video digest has no aligned transcript yet",
                digest_id=digest_id, stage=Stage.SENTENCES,
            )
        words_path = self.settings.tmp_dir / "{}_words.json".format(digest_id)
        name = "{}.txt".format(digest_id)
        output = self.settings.sent_sep_file(name)
        try:
            words_path.write_text(json.dumps(record.align_trans.to_dict()), encoding="utf-8")
        except OSError as exc:
            raise PersistenceFailure(
                "unable to write the aligned words", digest_id=digest_id, stage=Stage.SENTENCES
            ) from exc

        result = self.sentence_separator.run(words_path, output)
        if not result.ok or not output.is_file():
            logger.warning(
                "Sentence separation produced nothing for %s (exit %s)", digest_id, result.returncode
            )
            return None
        self.store.update(digest_id, sent_sep_trans_name=name)
        return name

    # ------------------------------------------------------------------
    # Queries and editor data
    # ------------------------------------------------------------------

    def get(self, digest_id: str) -> DigestRecord:
        return self.store.load(digest_id)

    def status(self, digest_id: str) -> StatusReport:
        record = self.store.get(digest_id)
        if record is None:
            return StatusReport(digest_id, None, MSG_NOT_FOUND)
        if record.is_processing():
            message = MSG_PROCESSING
        elif record.is_ready():
            message = MSG_READY
        elif record.state == DigestState.FAILED and record.failure:
            message = "video digest failed during {}: {}".format(
                record.failure.stage, record.failure.reason
            )
        else:
            message = MSG_CREATED
        return StatusReport(digest_id, record.state, message, record.failure)

    def digest_data(self, digest_id: str) -> str:
        """Serialized editor payload: digest, transcript, ytid, videoLength."""
        cached = self.cache.get(digest_id)
        if cached is not None:
            logger.debug("Using cached payload for %s", digest_id)
            return cached

        generation = self.cache.generation
        try:
            record = self.store.load(digest_id)
        except DigestNotFound:
            raise DigestNotFound(
                "unable to load the specified video digest data", digest_id=digest_id
            ) from None
        if record.is_processing():
            raise PreconditionNotMet(
                "the video digest is currently processing", digest_id=digest_id
            )
        if not record.is_ready() or record.align_trans is None:
            raise PreconditionNotMet(
                "the transcript did not upload correctly: please create the video digest from scratch",
                digest_id=digest_id,
            )
        payload = json.dumps({
            "digest": record.digest,
            "transcript": record.align_trans.to_dict(),
            "ytid": record.video_id,
            "videoLength": record.video_length,
        })
        self.cache.put(digest_id, payload, generation=generation)
        return payload

    def save_digest_document(self, digest_id: str, document: Dict[str, Any]) -> DigestRecord:
        if not isinstance(document, dict):
            raise UnsupportedFormat(
                "the digest document must be a JSON object", digest_id=digest_id
            )
        try:
            return self.store.update(digest_id, digest=document)
        except DigestNotFound:
            raise DigestNotFound(
                "unable to save the video digest data", digest_id=digest_id
            ) from None

    def word_chain(self, digest_id: str) -> WordChain:
        record = self.store.load(digest_id)
        if record.align_trans is None:
            raise PreconditionNotMet(
                "the video digest has no aligned transcript yet", digest_id=digest_id
            )
        return WordChain.materialize(record.align_trans.words)

    def segment(self, digest_id: str) -> SegmentationResult:
        return self.segmentation.segment(digest_id)

    # ------------------------------------------------------------------
    # Failure bookkeeping
    # ------------------------------------------------------------------

    def _fail(self, digest_id: str, stage: Stage, exc: BaseException) -> DigestError:
        """Persist FAILED for ``stage`` and return the error to surface."""
        if isinstance(exc, DigestError):
            error = exc.with_context(digest_id=digest_id, stage=stage)
            logger.error("Digest %s failed in %s: %s", digest_id, stage, error.message)
        else:
            error = DigestError(str(exc) or type(exc).__name__, digest_id=digest_id, stage=stage)
            error.__cause__ = exc
            logger.exception("Digest %s crashed in %s", digest_id, stage)

        try:
            self.store.update(
                digest_id,
                state=DigestState.FAILED,
                failure=StageFailure(str(error.stage or stage), error.message),
            )
        except DigestError:
            logger.exception("Could not record failure of digest %s", digest_id)
        return error
