"""Raw transcript cleaning and pseudo-speaker segmentation.

WHY: Transcripts arrive as whatever the user uploaded (prose, SRT with
cue numbers and timings, stray symbols) or as caption-derived text. The
forced aligner wants short, clean, speaker-tagged lines made only of
characters it can map to speech.

HOW: SRT input is first detected and flattened to prose (srt_to_text).
The prose is split on periods into candidate paragraphs; each one is
cleaned (clean_paragraph) and tagged with a speaker id that advances
every four paragraphs. Empty paragraphs are dropped.

RULES:
- SRT detection: first line is exactly "1", second line contains "-->"
- srt_to_text reads blocks with the srt library (malformed blocks are
  skipped) and joins each block's text lines with ". " (lossy,
  punctuation-inserting)
- Speaker ids are a turn-taking proxy, not diarization:
  paragraphs 0-3 → "0", 4-7 → "1", ... (indexed over candidate paragraphs)
- Allowed characters: letters, digits, underscore, space and ,.?!()'-
- Output preserves input order
"""

from __future__ import annotations

import re
from typing import List

import srt

from video_digest.core.ir import PreAlignLine

PARAGRAPHS_PER_SPEAKER = 4

_DISALLOWED_RE = re.compile(r"[^-\w,.?!()' ]")
_NON_WORD_RUN_RE = re.compile(r"\s+[^\w\s]+\s+")
_WHITESPACE_RE = re.compile(r"\s+")


def srt_to_text(document: str) -> str:
    """Flatten an SRT document to one line of text per subtitle block."""
    document = document.replace("\r\n", "\n").lstrip("\ufeff")
    out: List[str] = []
    for subtitle in srt.parse(document, ignore_errors=True):
        text_lines = [line for line in subtitle.content.split("\n") if line.strip()]
        out.append(". ".join(text_lines) + "\n")
    return "".join(out)


def is_subtitle_numbered(text: str) -> bool:
    """True if ``text`` looks like an SRT document."""
    lines = text.replace("\r\n", "\n").split("\n")
    return len(lines) > 2 and lines[0].strip().lstrip("\ufeff") == "1" and "-->" in lines[1]


def clean_paragraph(paragraph: str) -> str:
    """Reduce a paragraph to aligner-friendly characters and single spaces."""
    text = paragraph.replace("\n", " ")
    text = _DISALLOWED_RE.sub("", text)
    text = _NON_WORD_RUN_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def clean_and_segment(raw_text: str) -> List[PreAlignLine]:
    """Turn a raw transcript into speaker-tagged lines for the aligner."""
    if is_subtitle_numbered(raw_text):
        raw_text = srt_to_text(raw_text)

    lines: List[PreAlignLine] = []
    for index, paragraph in enumerate(raw_text.split(".")):
        cleaned = clean_paragraph(paragraph)
        if not cleaned:
            continue
        speaker = index // PARAGRAPHS_PER_SPEAKER
        lines.append(PreAlignLine(speaker=str(speaker), line=cleaned))
    return lines
