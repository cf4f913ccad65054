"""Structured subprocess invocation with timeouts.

WHY: Shell strings built by concatenating file names break on spaces and
invite injection. Running an argument vector and returning a plain result
object makes exit codes, stderr and timeouts explicit, and lets tests swap
in a fake runner that never starts a process.

HOW: ProcessRunner.run() wraps subprocess.run with captured output. A
timeout kills the child and comes back as ``timed_out=True``; a missing
executable comes back as return code 127. ProcessResult.check() converts a
failed result into ExternalToolFailure for the calling stage.

RULES:
- argv is a list of strings; it is never joined or passed to a shell
- stdout_path, when given, receives the captured stdout (aligner log)
- run() never raises for process failures; check() does
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from video_digest.errors import ExternalToolFailure

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

COMMAND_NOT_FOUND = 127


@dataclass
class ProcessResult:
    """Outcome of one external program run."""

    argv: List[str]
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    def check(self, stage: str, message: str, digest_id: Optional[str] = None) -> ProcessResult:
        """Return self if the run succeeded, else raise ExternalToolFailure."""
        if self.ok:
            return self
        if self.timed_out:
            message = "{} (timed out)".format(message)
        raise ExternalToolFailure(
            stage,
            message,
            returncode=self.returncode,
            stderr=self.stderr,
            timed_out=self.timed_out,
            digest_id=digest_id,
        )


def with_nice(argv: Sequence[str], use_nice: bool) -> List[str]:
    """Prefix argv with ``nice -n 20`` so long jobs yield to the web process."""
    argv = [str(a) for a in argv]
    return ["nice", "-n", "20"] + argv if use_nice else argv


class ProcessRunner:
    """Runs external programs from an argument vector."""

    def run(
        self,
        argv: Sequence[PathLike],
        cwd: Optional[PathLike] = None,
        timeout: Optional[float] = None,
        stdout_path: Optional[PathLike] = None,
    ) -> ProcessResult:
        args = [str(a) for a in argv]
        logger.info("Running: %s", " ".join(args))
        try:
            completed = subprocess.run(
                args,
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("Timed out after %ss: %s", timeout, args[0])
            return ProcessResult(
                argv=args,
                returncode=None,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                timed_out=True,
            )
        except OSError as exc:
            logger.error("Could not start %s: %s", args[0], exc)
            return ProcessResult(argv=args, returncode=COMMAND_NOT_FOUND, stderr=str(exc))

        if completed.returncode != 0:
            logger.warning(
                "%s exited with %d: %s",
                args[0], completed.returncode, completed.stderr.strip()[-500:],
            )
        if stdout_path is not None:
            Path(stdout_path).write_text(completed.stdout, encoding="utf-8")

        return ProcessResult(
            argv=args,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
