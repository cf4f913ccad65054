"""Sentence-separation and statistical segmenter wrappers.

WHY: Section suggestions come from two research scripts. The first groups
aligned words into sentences and writes a sentence-separated transcript;
the second reads that transcript and prints its suggested breaks among a
lot of diagnostic output.

HOW: SentenceSeparator.run() invokes
``<python> <add_sentences.py> <words.json> <out.txt>``.
Segmenter.segment() invokes
``<python> <adv_seg.py> eval <config> <transcript>`` and hands stdout to
parse_breaks(), which reads the line at a fixed offset from the end.

RULES:
- The break list is the 4th-from-last line of stdout split on "\\n"
  (a fixed contract of the segmenter script, not validated further)
- Segmenter: non-zero exit or any stderr output → ExternalToolFailure
- Too few lines or no integers on the break line → OutputParseError
- SentenceSeparator never raises for exit status; callers decide
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from video_digest.core.ir import Stage
from video_digest.errors import ExternalToolFailure, OutputParseError
from video_digest.tools.runner import ProcessResult, ProcessRunner, with_nice

logger = logging.getLogger(__name__)

BREAKS_LINE_OFFSET = 4

_INT_RE = re.compile(r"-?\d+")


def parse_breaks(stdout: str) -> Tuple[List[int], str]:
    """Extract break offsets from segmenter stdout.

    Returns:
        (breaks, raw_line): the integers on the break line and the line itself.
    """
    lines = stdout.split("\n")
    if len(lines) < BREAKS_LINE_OFFSET:
        raise OutputParseError(
            Stage.SEGMENT,
            "Segmentation error -- expected at least {} lines of output".format(BREAKS_LINE_OFFSET),
        )
    raw_line = lines[-BREAKS_LINE_OFFSET]
    breaks = [int(v) for v in _INT_RE.findall(raw_line)]
    if not breaks:
        raise OutputParseError(
            Stage.SEGMENT,
            "Segmentation error -- no breaks in {!r}".format(raw_line[:200]),
        )
    return breaks, raw_line


class SentenceSeparator:
    """Runs the sentence-grouping script over an aligned transcript."""

    def __init__(
        self,
        runner: ProcessRunner,
        python_bin: str,
        script: str,
        cwd: Optional[Path] = None,
        use_nice: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self._runner = runner
        self._python = python_bin
        self._script = script
        self._cwd = cwd
        self._use_nice = use_nice
        self._timeout = timeout

    def run(self, words_path: Path, output_path: Path) -> ProcessResult:
        argv = [self._python, self._script, str(words_path), str(output_path)]
        return self._runner.run(
            with_nice(argv, self._use_nice),
            cwd=self._cwd if self._cwd and Path(self._cwd).is_dir() else None,
            timeout=self._timeout,
        )


class Segmenter:
    """Runs the statistical segmenter and parses its break line."""

    def __init__(
        self,
        runner: ProcessRunner,
        python_bin: str,
        script: str,
        config_path: str,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._runner = runner
        self._python = python_bin
        self._script = script
        self._config = config_path
        self._cwd = cwd
        self._timeout = timeout

    def segment(self, transcript_path: Path) -> Tuple[List[int], str]:
        argv = [self._python, self._script, "eval", self._config, str(transcript_path)]
        result = self._runner.run(
            argv,
            cwd=self._cwd if self._cwd and Path(self._cwd).is_dir() else None,
            timeout=self._timeout,
        )
        result.check(Stage.SEGMENT, "Segmentation error -- please try again")
        if result.stderr.strip():
            raise ExternalToolFailure(
                Stage.SEGMENT,
                "Segmentation error -- please try again: {}".format(result.stderr.strip()[-500:]),
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return parse_breaks(result.stdout)
