"""ffmpeg / ffprobe wrappers: audio extraction and duration lookup.

WHY: The forced aligner needs uncompressed 16-bit PCM audio, and ingest
needs the video duration to store alongside the digest. Both come from
the ffmpeg suite.

HOW: Transcoder.extract_audio() runs
``ffmpeg -i <video> -acodec pcm_s16le -y <audio.wav>`` and checks that the
output file exists. Transcoder.read_duration() runs
``ffprobe -loglevel error -show_streams <video>`` and reads the first
``duration=`` line.

RULES:
- Non-zero exit → ExternalToolFailure (stage audio / ingest)
- A failed or timed-out extraction removes any partial audio file
- Missing audio file after a zero exit → OutputParseError
- ffprobe "duration=N/A" lines are skipped
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from video_digest.core.ir import Stage
from video_digest.errors import OutputParseError
from video_digest.tools.runner import ProcessRunner, with_nice

logger = logging.getLogger(__name__)

AUDIO_CODEC = "pcm_s16le"


class Transcoder:
    """Audio extraction and media probing via ffmpeg."""

    def __init__(
        self,
        runner: ProcessRunner,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        use_nice: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self._runner = runner
        self._ffmpeg = ffmpeg_bin
        self._ffprobe = ffprobe_bin
        self._use_nice = use_nice
        self._timeout = timeout

    def extract_audio(self, video_path: Path, audio_path: Path) -> Path:
        argv = [
            self._ffmpeg,
            "-i", str(video_path),
            "-acodec", AUDIO_CODEC,
            "-y", str(audio_path),
        ]
        result = self._runner.run(with_nice(argv, self._use_nice), timeout=self._timeout)
        if not result.ok:
            # A killed or failed run can leave a truncated file behind.
            Path(audio_path).unlink(missing_ok=True)
        result.check(Stage.AUDIO, "error processing the video")
        if not Path(audio_path).is_file():
            raise OutputParseError(Stage.AUDIO, "ffmpeg produced no audio file")
        logger.info("Extracted audio %s", audio_path)
        return Path(audio_path)

    def read_duration(self, video_path: Path) -> float:
        argv = [self._ffprobe, "-loglevel", "error", "-show_streams", str(video_path)]
        result = self._runner.run(with_nice(argv, self._use_nice), timeout=self._timeout)
        result.check(Stage.INGEST, "unable to determine video length")
        for line in result.stdout.splitlines():
            key, _, value = line.partition("=")
            if key.strip() != "duration":
                continue
            try:
                return float(value.strip())
            except ValueError:
                continue
        raise OutputParseError(Stage.INGEST, "unable to determine video length")
