"""Wrappers around the external programs the pipeline depends on.

WHY: Downloading, transcoding, forced alignment and segmentation are all
done by command-line programs that can be slow, crash, hang or print
garbage. Each wrapper owns one program's argument vector and the
interpretation of its exit code and output, so the orchestrator only sees
typed results and typed errors.

HOW: runner.py runs an argument vector (never a shell string) and returns
a ProcessResult. The other modules build argument vectors and turn results
into values or DigestError subclasses. Every wrapper takes the runner as a
constructor argument so tests can substitute a fake one.

RULES:
- No shell=True anywhere
- Non-zero exit → ExternalToolFailure; bad output → OutputParseError
- Timeouts are reported as ExternalToolFailure(timed_out=True)
"""

from video_digest.tools.runner import ProcessResult, ProcessRunner, with_nice

__all__ = ["ProcessResult", "ProcessRunner", "with_nice"]
