"""Configuration constants, storage layout, and .env loading.

WHY: The pipeline touches a lot of places on disk (raw transcripts, videos,
extracted audio, aligner working directories) and shells out to several
tools whose locations differ between machines. Keeping every path, binary
name, limit and timeout in one module makes them easy to find and override.

HOW: python-dotenv loads the .env file on import. Defaults are module-level
constants read from the environment. ``Settings`` snapshots them into a
frozen dataclass so the orchestrator, the CLI and the tests can each work
against their own data root without touching global state.

RULES:
- All defaults can be overridden via environment variables
- Timeouts of 0 (or unset) mean "no timeout"
- Directory layout is derived from DATA_ROOT; tests point it at tmp_path
- Settings.ensure_dirs() creates the whole directory layout
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _timeout(value: float) -> Optional[float]:
    return value if value > 0 else None


# ---------------------------------------------------------------------------
# Storage layout
# ---------------------------------------------------------------------------

DATA_ROOT = os.getenv("VDIGEST_DATA_ROOT", "data")
ANALYSIS_DIR = os.getenv("VDIGEST_ANALYSIS_DIR", "")
UTILS_DIR = os.getenv("VDIGEST_UTILS_DIR", "")

# ---------------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------------

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")
YTDLP_BIN = os.getenv("YTDLP_BIN", "yt-dlp")
PYTHON_BIN = os.getenv("PYTHON_BIN", sys.executable or "python")

ALIGN_SCRIPT = os.getenv("ALIGN_SCRIPT", "align.py")
SENTENCES_SCRIPT = os.getenv("SENTENCES_SCRIPT", "add_sentences.py")
SEGMENT_SCRIPT = os.getenv("SEGMENT_SCRIPT", "adv_seg.py")
SEGMENT_CONFIG = os.getenv("SEGMENT_CONFIG", "seg_config.json")

USE_NICE = _env_bool("USE_NICE", True)
CAPTION_LANGUAGE = os.getenv("CAPTION_LANGUAGE", "en")

# ---------------------------------------------------------------------------
# Limits and timeouts
# ---------------------------------------------------------------------------

MAX_VIDEO_LENGTH_S = _env_float("MAX_VIDEO_LENGTH_S", 60 * 60)
MAX_TRANSCRIPT_UPLOAD_BYTES = _env_int("MAX_TRANSCRIPT_UPLOAD_BYTES", 2 * 1024 * 1024)

DOWNLOAD_TIMEOUT_S = _env_float("DOWNLOAD_TIMEOUT_S", 300)
TRANSCODE_TIMEOUT_S = _env_float("TRANSCODE_TIMEOUT_S", 30 * 60)
ALIGN_TIMEOUT_S = _env_float("ALIGN_TIMEOUT_S", 2 * 60 * 60)
SEGMENT_TIMEOUT_S = _env_float("SEGMENT_TIMEOUT_S", 10 * 60)

CACHE_MAX_ENTRIES = _env_int("CACHE_MAX_ENTRIES", 128)
PIPELINE_WORKERS = _env_int("PIPELINE_WORKERS", 4)

NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "").strip() or None


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the pipeline configuration.

    WHY: Module constants are fine for a single process, but the tests
    (and anyone embedding the pipeline) need several independent
    configurations side by side, each rooted in its own directory.

    HOW: ``from_env()`` copies the module constants. Derived directories
    are properties of ``data_root`` so overriding the root moves the whole
    layout. ``with_root()`` returns a copy rooted elsewhere.

    RULES:
    - raw_trans/  uploaded or caption-derived transcripts (*.txt)
    - videos/     downloaded videos and their caption tracks
    - audio/      extracted PCM audio (*.wav)
    - tmp/        pre-alignment JSON, aligner output, aligner working dirs
    - sentsep/    sentence-separated transcripts
    - digests/    persisted digest records
    """

    data_root: Path
    ffmpeg_bin: str = FFMPEG_BIN
    ffprobe_bin: str = FFPROBE_BIN
    ytdlp_bin: str = YTDLP_BIN
    python_bin: str = PYTHON_BIN
    align_script: str = ALIGN_SCRIPT
    sentences_script: str = SENTENCES_SCRIPT
    segment_script: str = SEGMENT_SCRIPT
    segment_config: str = SEGMENT_CONFIG
    use_nice: bool = USE_NICE
    caption_language: str = CAPTION_LANGUAGE
    max_video_length_s: float = MAX_VIDEO_LENGTH_S
    max_transcript_upload_bytes: int = MAX_TRANSCRIPT_UPLOAD_BYTES
    download_timeout_s: Optional[float] = field(default_factory=lambda: _timeout(DOWNLOAD_TIMEOUT_S))
    transcode_timeout_s: Optional[float] = field(default_factory=lambda: _timeout(TRANSCODE_TIMEOUT_S))
    align_timeout_s: Optional[float] = field(default_factory=lambda: _timeout(ALIGN_TIMEOUT_S))
    segment_timeout_s: Optional[float] = field(default_factory=lambda: _timeout(SEGMENT_TIMEOUT_S))
    cache_max_entries: int = CACHE_MAX_ENTRIES
    pipeline_workers: int = PIPELINE_WORKERS
    notify_webhook_url: Optional[str] = NOTIFY_WEBHOOK_URL
    analysis_dir_override: Optional[Path] = None
    utils_dir_override: Optional[Path] = None

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            data_root=Path(DATA_ROOT),
            analysis_dir_override=Path(ANALYSIS_DIR) if ANALYSIS_DIR else None,
            utils_dir_override=Path(UTILS_DIR) if UTILS_DIR else None,
        )

    def with_root(self, data_root: Path) -> Settings:
        return replace(self, data_root=Path(data_root))

    # -- directories ---------------------------------------------------------

    @property
    def raw_trans_dir(self) -> Path:
        return self.data_root / "raw_trans"

    @property
    def videos_dir(self) -> Path:
        return self.data_root / "videos"

    @property
    def audio_dir(self) -> Path:
        return self.data_root / "audio"

    @property
    def tmp_dir(self) -> Path:
        return self.data_root / "tmp"

    @property
    def sent_sep_dir(self) -> Path:
        return self.data_root / "sentsep"

    @property
    def digests_dir(self) -> Path:
        return self.data_root / "digests"

    @property
    def analysis_dir(self) -> Path:
        """Working directory of the segmenter script."""
        return self.analysis_dir_override or self.data_root / "analysis"

    @property
    def utils_dir(self) -> Path:
        """Working directory of the sentence-separation script."""
        return self.utils_dir_override or self.data_root / "utils"

    # -- files ---------------------------------------------------------------

    def raw_transcript_file(self, name: str) -> Path:
        return self.raw_trans_dir / name

    def audio_file(self, audio_name: str) -> Path:
        return self.audio_dir / "{}.wav".format(audio_name)

    def sent_sep_file(self, name: str) -> Path:
        return self.sent_sep_dir / name

    def ensure_dirs(self) -> None:
        for directory in (
            self.raw_trans_dir,
            self.videos_dir,
            self.audio_dir,
            self.tmp_dir,
            self.sent_sep_dir,
            self.digests_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
