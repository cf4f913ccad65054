"""Forced aligner wrapper: run the alignment script and load its JSON output.

WHY: Forced alignment is the slowest and least predictable stage. The
aligner is a separate Python program that maps each transcript word to
its position in the audio and writes the result as JSON. The pipeline has
to run it in its own working directory, capture its log, and refuse to
store output that does not look like an alignment.

HOW: ForcedAligner.align() runs
``<python> <align.py> <audio.wav> <prealign.json> <out.json>`` with the
working directory as cwd and stdout captured to ``<out.json>-output``.
load_alignment() reads the output file and validates it against
ALIGNMENT_SCHEMA with jsonschema before building an AlignedTranscript.

RULES:
- Non-zero exit → ExternalToolFailure(stage="align")
- Timeout → ExternalToolFailure(timed_out=True), working directory removed
- Missing, non-JSON or schema-invalid output → OutputParseError
- An alignment with zero words is invalid
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from video_digest.core.ir import AlignedTranscript, Stage
from video_digest.errors import OutputParseError
from video_digest.tools.runner import ProcessRunner, with_nice

logger = logging.getLogger(__name__)

ALIGNMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["words"],
    "properties": {
        "words": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["word", "start", "end"],
                "properties": {
                    "word": {"type": "string"},
                    "alignedWord": {"type": "string"},
                    "start": {"type": "number"},
                    "end": {"type": "number"},
                    "speaker": {"type": ["string", "integer"]},
                    "sentenceNumber": {"type": "integer"},
                },
            },
        },
    },
}


def log_path_for(output_path: Path) -> Path:
    """Companion log file the aligner's stdout is written to."""
    return Path("{}-output".format(output_path))


def load_alignment(path: Path) -> AlignedTranscript:
    """Read and validate an aligner output file."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise OutputParseError(
            Stage.ALIGN, "aligned transcript is missing: {}".format(path)
        ) from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise OutputParseError(
            Stage.ALIGN, "aligned transcript is not valid JSON: {}".format(exc)
        ) from exc
    try:
        jsonschema.validate(instance=data, schema=ALIGNMENT_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise OutputParseError(
            Stage.ALIGN, "aligned transcript is malformed: {}".format(exc.message)
        ) from exc
    return AlignedTranscript.from_dict(data)


class ForcedAligner:
    """Runs the external forced-alignment script."""

    def __init__(
        self,
        runner: ProcessRunner,
        python_bin: str,
        script: str,
        use_nice: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self._runner = runner
        self._python = python_bin
        self._script = script
        self._use_nice = use_nice
        self._timeout = timeout

    def align(
        self,
        audio_path: Path,
        prealign_path: Path,
        output_path: Path,
        workdir: Path,
    ) -> AlignedTranscript:
        argv = [self._python, self._script, str(audio_path), str(prealign_path), str(output_path)]
        logger.info("Starting alignment in %s", workdir)
        result = self._runner.run(
            with_nice(argv, self._use_nice),
            cwd=workdir,
            timeout=self._timeout,
            stdout_path=log_path_for(output_path),
        )
        if result.timed_out:
            shutil.rmtree(workdir, ignore_errors=True)
        result.check(Stage.ALIGN, "error creating the aligned transcript")
        return load_alignment(output_path)
