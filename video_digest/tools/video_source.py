"""YouTube video source: URL parsing, metadata lookup, and download via yt-dlp.

WHY: A digest starts from a YouTube URL. Before anything is stored the
pipeline has to confirm the video exists and is not too long, then fetch
the video file and (best-effort) its auto-generated caption track.

HOW: extract_video_id() parses watch URLs, /embed/ and /shorts/ paths and
youtu.be short links.
VideoSource.lookup() runs ``yt-dlp --dump-json`` for title, duration and
thumbnail. VideoSource.download() runs ``yt-dlp -f mp4 --write-auto-sub``
into the videos directory, skipping the download when the file is already
there.

RULES:
- Only youtube.com, www.youtube.com, m.youtube.com and youtu.be are accepted
- lookup() failure → SourceNotFound
- download() failure → ExternalToolFailure (stage ingest)
- A missing caption track is not an error; caption_path is None
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from video_digest.core.ir import Stage
from video_digest.errors import OutputParseError, SourceNotFound
from video_digest.tools.runner import ProcessRunner

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = frozenset({"youtube.com", "www.youtube.com", "m.youtube.com"})
SHORT_HOSTS = frozenset({"youtu.be"})
PATH_PREFIXES = frozenset({"embed", "shorts"})

_BAD_URL_MESSAGE = (
    "you must provide a YouTube url in the format: "
    "http://www.youtube.com/watch?v=someIdValue"
)


def extract_video_id(url: str) -> str:
    """Return the video id of a YouTube URL, or raise SourceNotFound."""
    parsed = urlparse((url or "").strip())
    host = (parsed.hostname or "").lower()
    video_id = ""
    parts = [p for p in parsed.path.split("/") if p]
    if host in YOUTUBE_HOSTS:
        if len(parts) >= 2 and parts[0] in PATH_PREFIXES:
            video_id = parts[1]
        else:
            video_id = (parse_qs(parsed.query).get("v") or [""])[0]
    elif host in SHORT_HOSTS:
        video_id = parts[0] if parts else ""
    if not video_id:
        raise SourceNotFound(_BAD_URL_MESSAGE, stage=Stage.INGEST)
    return video_id


def watch_url(video_id: str) -> str:
    return "https://www.youtube.com/watch?v={}".format(video_id)


@dataclass
class VideoInfo:
    """Basic metadata for a YouTube video."""

    video_id: str
    title: str
    duration_s: Optional[float]
    thumbnail_url: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "videoId": self.video_id,
            "title": self.title,
            "duration": self.duration_s,
            "iurl": self.thumbnail_url,
        }


@dataclass
class DownloadResult:
    video_path: Path
    caption_path: Optional[Path]


class VideoSource:
    """Resolves and materializes YouTube videos with yt-dlp."""

    def __init__(
        self,
        runner: ProcessRunner,
        videos_dir: Path,
        ytdlp_bin: str = "yt-dlp",
        caption_language: str = "en",
        timeout: Optional[float] = None,
    ) -> None:
        self._runner = runner
        self._videos_dir = Path(videos_dir)
        self._ytdlp = ytdlp_bin
        self._lang = caption_language
        self._timeout = timeout

    def video_path(self, video_id: str) -> Path:
        return self._videos_dir / "{}.mp4".format(video_id)

    def caption_path(self, video_id: str) -> Path:
        return self._videos_dir / "{}.{}.vtt".format(video_id, self._lang)

    def lookup(self, video_id: str) -> VideoInfo:
        result = self._runner.run(
            [self._ytdlp, "--dump-json", "--skip-download", watch_url(video_id)],
            timeout=self._timeout,
        )
        if not result.ok:
            raise SourceNotFound(
                "unable to find a YouTube Video with the given URL",
                stage=Stage.INGEST,
            )
        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise OutputParseError(
                Stage.INGEST, "unreadable video metadata: {}".format(exc)
            ) from exc

        thumbnail = info.get("thumbnail")
        if not thumbnail and info.get("thumbnails"):
            thumbnail = info["thumbnails"][0].get("url")
        duration = info.get("duration")
        return VideoInfo(
            video_id=info.get("id") or video_id,
            title=info.get("title") or "",
            duration_s=float(duration) if duration is not None else None,
            thumbnail_url=thumbnail,
        )

    def download(self, video_id: str) -> DownloadResult:
        video_path = self.video_path(video_id)
        if video_path.is_file():
            logger.info("Video %s already downloaded", video_id)
        else:
            template = str(self._videos_dir / "{}.%(ext)s".format(video_id))
            argv = [
                self._ytdlp,
                "-f", "mp4",
                "--write-auto-sub",
                "--sub-lang", self._lang,
                "--sub-format", "vtt",
                "-o", template,
                watch_url(video_id),
            ]
            self._runner.run(argv, timeout=self._timeout).check(
                Stage.INGEST, "unable to load YouTube video properly"
            )
            if not video_path.is_file():
                raise OutputParseError(Stage.INGEST, "yt-dlp produced no video file")

        caption_path = self.caption_path(video_id)
        return DownloadResult(
            video_path=video_path,
            caption_path=caption_path if caption_path.is_file() else None,
        )
