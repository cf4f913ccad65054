"""WebVTT caption parsing: plain narrative text and word-level timings.

WHY: YouTube's auto-generated caption track is the cheapest source of a
transcript, and its styled cues already carry per-word timestamps. The
pipeline needs two things from one document: clean prose to feed the
forced aligner, and a preliminary word alignment the editor can show
before (or instead of) running the aligner.

HOW: The document is split into lines. A cue timing line
(``HH:MM:SS.mmm --> HH:MM:SS.mmm``) starts a new card; everything before
the first timing line is header material and is discarded. Each card is
then read twice:

  vtt_to_text       : plain cards (no ``<c>`` styling marker) become one
                      capitalized, period-terminated line each. Styled
                      cards repeat text already shown and are rejected.
  alignment_for_vtt : styled cards are split into words. A trailing
                      ``<HH:MM:SS.mmm>`` tag ends a word and starts the
                      next; a word without a tag ends at the card end.

RULES:
- A card is "styled" if any of its lines contains ``<c>``
- Styled cards contribute nothing to the plain text, plain cards nothing
  to the alignment
- Zero-duration cards (start == end) emit no words
- sentence_number increases once per card that emitted words. This is a
  card-level approximation, not a linguistic sentence boundary
- speaker is always "0" for caption-derived words
- Malformed timing lines are treated as caption text, never raised
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from video_digest.core.ir import AlignedTranscript, WordRecord

CUE_MARKER = "<c>"

CUE_TIMING_RE = re.compile(
    r"^(\d\d):(\d\d):(\d\d\.\d\d\d)\s*-->\s*(\d\d):(\d\d):(\d\d\.\d\d\d)"
)

# Inline per-word timestamp, e.g. "<00:00:01.000>". Splitting on it yields
# [text, h, m, s, text, h, m, s, ..., text].
_TIMESTAMP_TAG_RE = re.compile(r"<(\d\d):(\d\d):(\d\d\.\d\d\d)>")

# Any other tag (<c>, </c>, <c.colorE5E5E5>) carries no timing.
_TAG_RE = re.compile(r"<[^>]*>")

_SENTENCE_END = (".", "?", "!")


@dataclass
class Card:
    """One cue: its timing and the text lines that follow the timing line."""

    start: float
    end: float
    lines: List[str] = field(default_factory=list)

    @property
    def is_styled(self) -> bool:
        return any(CUE_MARKER in line for line in self.lines)

    @property
    def text(self) -> str:
        return " ".join(line.strip() for line in self.lines if line.strip())


@dataclass
class CaptionDocument:
    """Both views of a parsed caption document."""

    plain_text: str
    alignment: AlignedTranscript


def parse_timestamp(hours: str, minutes: str, seconds: str) -> float:
    """Convert timestamp components to float seconds."""
    return int(hours, 10) * 3600 + int(minutes, 10) * 60 + float(seconds)


def split_cards(document: str) -> List[Card]:
    """Split a cue document into cards, dropping the header.

    Lines before the first timing line are discarded. A line that looks
    like a timing line but does not match the pattern is kept as text.
    """
    cards: List[Card] = []
    current: Optional[Card] = None
    for raw_line in document.replace("\r\n", "\n").split("\n"):
        match = CUE_TIMING_RE.match(raw_line)
        if match:
            h1, m1, s1, h2, m2, s2 = match.groups()
            current = Card(
                start=parse_timestamp(h1, m1, s1),
                end=parse_timestamp(h2, m2, s2),
            )
            cards.append(current)
        elif current is not None:
            current.lines.append(raw_line)
    return cards


def card_text(card: Card) -> str:
    """Plain text for one card, or "" if the card is rejected.

    RULES:
    - Styled cards and cards with no text are rejected
    - First character is upper-cased
    - A period is appended unless the text already ends a sentence
    """
    if card.is_styled:
        return ""
    text = card.text
    if not text:
        return ""
    text = text[0].upper() + text[1:]
    if not text.endswith(_SENTENCE_END):
        text += "."
    return text


def vtt_to_text(document: str) -> str:
    """Extract narrative text from a cue document, one accepted card per line."""
    lines = [card_text(card) for card in split_cards(document)]
    return "".join(line + "\n" for line in lines if line)


def card_words(card: Card, sentence_number: int) -> List[WordRecord]:
    """Word records for one styled card.

    HOW: Styling tags are stripped, then each ``word<timestamp>`` run
    becomes one record. The first word starts at the card start; each
    word starts where the previous one ended.

    RULES:
    - Plain lines of a styled card (the repeated previous caption) are skipped
    - Returns [] for zero-duration cards
    - end is clamped to be >= start
    """
    if card.start == card.end:
        return []

    words: List[WordRecord] = []
    word_start = card.start
    for line in card.lines:
        if CUE_MARKER not in line:
            continue
        pieces = _TIMESTAMP_TAG_RE.split(line)
        for i in range(0, len(pieces), 4):
            word = _TAG_RE.sub("", pieces[i]).strip()
            if not word:
                continue
            if i + 3 < len(pieces):
                word_end = parse_timestamp(*pieces[i + 1:i + 4])
            else:
                word_end = card.end
            word_end = max(word_end, word_start)
            words.append(WordRecord(
                word=word,
                aligned_word=word.upper(),
                start=word_start,
                end=word_end,
                speaker="0",
                sentence_number=sentence_number,
            ))
            word_start = word_end
    return words


def alignment_for_vtt(document: str) -> AlignedTranscript:
    """Build the preliminary word alignment from styled cards."""
    words: List[WordRecord] = []
    sentence_number = 0
    for card in split_cards(document):
        if not card.is_styled:
            continue
        emitted = card_words(card, sentence_number)
        if emitted:
            words.extend(emitted)
            sentence_number += 1
    return AlignedTranscript(words=words)


def parse_caption_document(document: str) -> CaptionDocument:
    """Parse a cue document into plain text and word alignment."""
    return CaptionDocument(
        plain_text=vtt_to_text(document),
        alignment=alignment_for_vtt(document),
    )
