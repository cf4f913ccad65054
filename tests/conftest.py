"""Shared test fixtures for the video_digest test suite.

WHY: Most pipeline tests need the same things: sample caption and subtitle
documents, settings rooted in a throwaway directory, and a stand-in for
the external programs (yt-dlp, ffmpeg, the aligner and the analysis
scripts) so no real process is ever started.

HOW: FakeRunner implements ProcessRunner.run(). Handlers are registered
per program or script name and matched against the file name of every
argv element, so ``nice -n 20 ffmpeg ...`` and ``python align.py ...``
both find their handler. Every call is recorded. ``happy_runner`` wires
handlers that behave like the real tools on a short talk.

RULES:
- Settings never point at the real environment: data_root is tmp_path
- use_nice is off so argv assertions stay short
- Unmatched commands succeed with empty output
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional

import pytest

from video_digest.config import Settings
from video_digest.core.ir import DigestRecord
from video_digest.pipeline.notify import Notifier
from video_digest.pipeline.orchestrator import PipelineOrchestrator
from video_digest.tools.runner import ProcessResult


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

SAMPLE_VTT = """WEBVTT
Kind: captions
Language: en

00:00:00.000 --> 00:00:02.000 align:start position:0%
hello<00:00:00.500><c> and</c><00:00:01.000><c> welcome</c>

00:00:02.000 --> 00:00:02.010 align:start position:0%
hello and welcome

00:00:02.010 --> 00:00:04.000 align:start position:0%
hello and welcome
today<00:00:02.600><c> we</c><00:00:03.100><c> talk</c>

00:00:04.000 --> 00:00:06.000
this card has no styling
"""

SAMPLE_SRT = """1
00:00:01,000 --> 00:00:02,000
Hello there

2
00:00:02,000 --> 00:00:04,000
General Kenobi
You are bold
"""

SAMPLE_TRANSCRIPT = (
    "Welcome to the talk. Today we cover alignment. "
    "It maps words to audio. Then we segment the transcript. "
    "Sections make long videos easier to browse."
)

VIDEO_ID = "abc123XYZ"

SEGMENTER_STDOUT = "loading model\nscoring\n[3, 7]\nbest score 0.91\ndone\n"


# ---------------------------------------------------------------------------
# Fake process runner
# ---------------------------------------------------------------------------

Handler = Callable[[List[str], Optional[str]], ProcessResult]


class FakeRunner:
    """Scripted stand-in for ProcessRunner.

    Handlers receive ``(argv, cwd)`` and return a ProcessResult; they may
    create the files the real tool would create.
    """

    def __init__(self) -> None:
        self.calls: List[SimpleNamespace] = []
        self._handlers: Dict[str, Handler] = {}
        self._lock = threading.Lock()

    def on(
        self,
        name: str,
        handler: Optional[Handler] = None,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        if handler is None:
            def handler(argv, cwd):
                return ProcessResult(
                    argv, None if timed_out else returncode, stdout, stderr, timed_out
                )
        self._handlers[name] = handler

    def run(self, argv, cwd=None, timeout=None, stdout_path=None) -> ProcessResult:
        args = [str(a) for a in argv]
        with self._lock:
            self.calls.append(SimpleNamespace(argv=args, cwd=cwd, timeout=timeout))
        handler = self._match(args)
        if handler is None:
            result = ProcessResult(args, 0)
        else:
            result = handler(args, None if cwd is None else str(cwd))
        if stdout_path is not None and not result.timed_out:
            Path(stdout_path).write_text(result.stdout, encoding="utf-8")
        return result

    def calls_to(self, name: str) -> List[SimpleNamespace]:
        with self._lock:
            return [c for c in self.calls if any(Path(a).name == name for a in c.argv)]

    def _match(self, args: List[str]) -> Optional[Handler]:
        for arg in args:
            handler = self._handlers.get(Path(arg).name)
            if handler is not None:
                return handler
        return None


def _ytdlp(info: dict, write_captions: bool = True) -> Handler:
    def handler(argv, cwd):
        if "--dump-json" in argv:
            return ProcessResult(argv, 0, stdout=json.dumps(info))
        template = argv[argv.index("-o") + 1]
        Path(template.replace("%(ext)s", "mp4")).write_bytes(b"\x00video")
        if write_captions:
            Path(template.replace("%(ext)s", "en.vtt")).write_text(SAMPLE_VTT, encoding="utf-8")
        return ProcessResult(argv, 0)
    return handler


def _ffmpeg(argv, cwd):
    Path(argv[-1]).write_bytes(b"RIFF")
    return ProcessResult(argv, 0)


def _aligner(argv, cwd):
    """Write one timed word per pre-alignment word, like the real aligner."""
    prealign = json.loads(Path(argv[-2]).read_text(encoding="utf-8"))
    words = []
    t = 0.0
    for sentence, line in enumerate(prealign):
        for token in line["line"].split():
            words.append({
                "word": token,
                "alignedWord": token.upper(),
                "start": t,
                "end": t + 0.25,
                "speaker": line["speaker"],
                "sentenceNumber": sentence,
            })
            t += 0.3
    # The real aligner sometimes tags the first word with a later speaker.
    words[0]["speaker"] = "3"
    Path(argv[-1]).write_text(json.dumps({"words": words}), encoding="utf-8")
    return ProcessResult(argv, 0, stdout="aligned {} words\n".format(len(words)))


def _sentences(argv, cwd):
    Path(argv[-1]).write_text("welcome to the talk\ntoday we cover alignment\n", encoding="utf-8")
    return ProcessResult(argv, 0)


def install_happy_handlers(runner: FakeRunner, duration: float = 120.0, captions: bool = True) -> FakeRunner:
    info = {"id": VIDEO_ID, "title": "A Talk", "duration": duration, "thumbnail": "http://img/0.jpg"}
    runner.on("yt-dlp", _ytdlp(info, write_captions=captions))
    runner.on("ffprobe", stdout="[STREAM]\nduration=N/A\nduration={:.6f}\n[/STREAM]\n".format(duration))
    runner.on("ffmpeg", _ffmpeg)
    runner.on("align.py", _aligner)
    runner.on("add_sentences.py", _sentences)
    runner.on("adv_seg.py", stdout=SEGMENTER_STDOUT)
    return runner


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.notified: List[str] = []

    def notify(self, record: DigestRecord) -> None:
        self.notified.append(record.id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in tmp_path with plain tool names and no nice."""
    return Settings(
        data_root=tmp_path / "data",
        ffmpeg_bin="ffmpeg",
        ffprobe_bin="ffprobe",
        ytdlp_bin="yt-dlp",
        python_bin="python",
        align_script="align.py",
        sentences_script="add_sentences.py",
        segment_script="adv_seg.py",
        segment_config="seg_config.json",
        use_nice=False,
        caption_language="en",
        max_video_length_s=3600,
        max_transcript_upload_bytes=64 * 1024,
        download_timeout_s=None,
        transcode_timeout_s=None,
        align_timeout_s=None,
        segment_timeout_s=None,
        cache_max_entries=8,
        pipeline_workers=4,
        notify_webhook_url=None,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def happy_runner(fake_runner) -> FakeRunner:
    return install_happy_handlers(fake_runner)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(settings, happy_runner, notifier):
    """PipelineOrchestrator whose external tools are all scripted."""
    orch = PipelineOrchestrator(settings, runner=happy_runner, notifier=notifier)
    yield orch
    orch.shutdown(wait=True)


@pytest.fixture
def transcript_file(tmp_path) -> Path:
    path = tmp_path / "upload.txt"
    path.write_text(SAMPLE_TRANSCRIPT, encoding="utf-8")
    return path


@pytest.fixture
def created_digest(orchestrator, transcript_file) -> DigestRecord:
    """A digest ingested from an uploaded transcript, state CREATED."""
    return orchestrator.ingest(VIDEO_ID, title="My Digest", transcript_path=transcript_file)


@pytest.fixture
def ready_digest(orchestrator, created_digest) -> DigestRecord:
    """A digest pushed all the way to READY."""
    return orchestrator.advance(created_digest.id).result(timeout=10)
