"""Command-line interface for the video digest pipeline.

WHY: Operators need to run and inspect the pipeline without the editor:
create a digest from a terminal, push it through alignment, check where
it stands, ask for section suggestions, or just turn a caption file into
text.

HOW: argparse subcommands, one per pipeline operation. Each builds a
PipelineOrchestrator from the environment (or --data-root) and calls the
matching method. ``advance`` and ``align`` wait for the pipeline to finish
so the exit status reflects the outcome. Status lines go to stderr;
command results (JSON, text) go to stdout so the CLI can be piped.

RULES:
- main() returns the process exit status: 0 ok, 1 pipeline error, 130 Ctrl-C
- DigestError messages are printed as "Error: <category>: <message>"
- vtt2text needs no data directory and starts no external tools
- logging.basicConfig is only called here (and by the API server entry)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from video_digest.config import Settings
from video_digest.core.captions import vtt_to_text
from video_digest.errors import DigestError
from video_digest.pipeline.orchestrator import PipelineOrchestrator
from video_digest.tools.video_source import extract_video_id


def _status(msg: str) -> None:
    """Print a status message to stderr.

    RULES:
    - All status messages go to stderr
    - Always flush after writing
    """
    print(msg, file=sys.stderr, flush=True)


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if args.data_root:
        settings = settings.with_root(Path(args.data_root))
    return settings


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_lookup(args: argparse.Namespace, orchestrator: PipelineOrchestrator) -> int:
    _emit(orchestrator.lookup_video(args.url).to_dict())
    return 0


def _cmd_ingest(args: argparse.Namespace, orchestrator: PipelineOrchestrator) -> int:
    video_id = extract_video_id(args.url)
    _status("Downloading {} ...".format(video_id))
    record = orchestrator.ingest(
        video_id,
        title=args.title,
        transcript_path=Path(args.transcript) if args.transcript else None,
        use_captions=args.captions,
    )
    _status("Created digest {}".format(record.id))
    print(record.id)
    return 0


def _cmd_advance(args: argparse.Namespace, orchestrator: PipelineOrchestrator) -> int:
    future = orchestrator.advance(args.digest_id, confirm=True)
    _status("Cleaning transcript and extracting audio ...")
    record = future.result()
    _status("Digest {} is {} ({} words)".format(
        record.id, record.state.value, len(record.align_trans.words) if record.align_trans else 0
    ))
    return 0


def _cmd_align(args: argparse.Namespace, orchestrator: PipelineOrchestrator) -> int:
    _status("Aligning ...")
    record = orchestrator.align(args.digest_id)
    _status("Digest {} is {}".format(record.id, record.state.value))
    return 0


def _cmd_status(args: argparse.Namespace, orchestrator: PipelineOrchestrator) -> int:
    report = orchestrator.status(args.digest_id)
    _emit(report.to_dict())
    return 0 if report.state is not None else 1


def _cmd_segment(args: argparse.Namespace, orchestrator: PipelineOrchestrator) -> int:
    _emit(orchestrator.segment(args.digest_id).to_dict())
    return 0


def _cmd_vtt2text(args: argparse.Namespace) -> int:
    try:
        document = Path(args.vtt_file).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _status("Error: cannot read {}: {}".format(args.vtt_file, exc))
        return 1
    sys.stdout.write(vtt_to_text(document))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from video_digest.server.app import run_api
    run_api(host=args.host, port=args.port)
    return 0


_PIPELINE_COMMANDS = {
    "lookup": _cmd_lookup,
    "ingest": _cmd_ingest,
    "advance": _cmd_advance,
    "align": _cmd_align,
    "status": _cmd_status,
    "segment": _cmd_segment,
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    Separate from main() so tests can inspect the parser without running
    anything.
    """
    parser = argparse.ArgumentParser(
        prog="video-digest",
        description="Create word-aligned, segmented transcripts of YouTube videos.",
    )
    parser.add_argument(
        "--data-root",
        default=None,
        help="Directory holding transcripts, videos, audio and digests "
             "(default: $VDIGEST_DATA_ROOT or ./data).",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log pipeline progress (tool invocations, stage transitions).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("lookup", help="Show title, length and thumbnail of a YouTube video.")
    p.add_argument("url", help="YouTube watch URL.")

    p = sub.add_parser("ingest", help="Download a video and register a new digest.")
    p.add_argument("url", help="YouTube watch URL.")
    p.add_argument("--title", default=None, help="Digest title (default: the video title).")
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("--transcript", default=None, help="Transcript file (.txt or .srt).")
    source.add_argument(
        "--captions",
        action="store_true",
        help="Build the transcript from the video's auto captions.",
    )

    for name, help_text in (
        ("advance", "Clean, extract audio and align a digest; waits for completion."),
        ("align", "Re-run forced alignment for a digest."),
        ("status", "Show the state of a digest."),
        ("segment", "Suggest section breaks for a ready digest."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("digest_id", help="Digest id printed by 'ingest'.")

    p = sub.add_parser("vtt2text", help="Print the plain text of a WebVTT caption file.")
    p.add_argument("vtt_file", help="Path to a .vtt file.")

    p = sub.add_parser("serve", help="Run the HTTP API.")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "vtt2text":
        return _cmd_vtt2text(args)
    if args.command == "serve":
        return _cmd_serve(args)

    try:
        with PipelineOrchestrator(_settings(args)) as orchestrator:
            return _PIPELINE_COMMANDS[args.command](args, orchestrator)
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        return 130
    except DigestError as exc:
        _status("Error: {}: {}".format(exc.category, exc.message))
        return 1


if __name__ == "__main__":
    sys.exit(main())
