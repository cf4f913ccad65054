"""Linked word sequence with section and chapter boundary queries.

WHY: The editor splits a transcript into sections and chapters by flagging
the first word of each. Every edit asks the same questions: where does the
section containing this word start, where does the next chapter begin.
Those are walks along the word sequence to the nearest flagged word.

HOW: An arena. The chain owns a list of WordRecord plus two parallel index
lists, prev and next, with -1 meaning "no neighbour". Nodes are addressed
by position; neighbour links are plain integers, so no record ever holds a
reference to another.

RULES:
- materialize() links records in input order; it never sorts. Callers
  must pass time-ordered records
- traverse_check() is iterative, allocates nothing per step, and returns
  None (never raises) when it runs off either end
- The prev_*/next_* helpers never match the word they start from
"""

from __future__ import annotations

from typing import Iterable, Iterator, List, Optional

from video_digest.core.ir import WordRecord

NO_INDEX = -1

_BREAK_FLAGS = {
    "section": "start_section",
    "chapter": "start_chapter",
}


class WordChain:
    """Doubly linked, index-addressed sequence of WordRecord."""

    def __init__(self) -> None:
        self._records: List[WordRecord] = []
        self._prev: List[int] = []
        self._next: List[int] = []

    @classmethod
    def materialize(cls, records: Iterable[WordRecord]) -> WordChain:
        chain = cls()
        for record in records:
            chain.append(record)
        return chain

    def append(self, record: WordRecord) -> int:
        index = len(self._records)
        self._records.append(record)
        self._prev.append(index - 1 if index else NO_INDEX)
        self._next.append(NO_INDEX)
        if index:
            self._next[index - 1] = index
        return index

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> WordRecord:
        return self._records[index]

    def __iter__(self) -> Iterator[WordRecord]:
        return iter(self._records)

    def records(self) -> List[WordRecord]:
        return list(self._records)

    def prev(self, index: int) -> Optional[int]:
        self._check(index)
        neighbour = self._prev[index]
        return None if neighbour == NO_INDEX else neighbour

    def next(self, index: int) -> Optional[int]:
        self._check(index)
        neighbour = self._next[index]
        return None if neighbour == NO_INDEX else neighbour

    def traverse_check(
        self,
        index: int,
        go_forward: bool,
        break_type: str,
        check_this: bool = False,
    ) -> Optional[int]:
        """Index of the nearest word flagged as a ``break_type`` start.

        Args:
            index: Word to start from.
            go_forward: Walk towards the end (True) or the start (False).
            break_type: "section" or "chapter".
            check_this: Whether the starting word itself may match.

        Returns:
            The matching index, or None if no flagged word exists in that
            direction.
        """
        self._check(index)
        flag = _BREAK_FLAGS.get(break_type)
        if flag is None:
            raise ValueError("Unknown break type: {!r}".format(break_type))

        links = self._next if go_forward else self._prev
        current = index if check_this else links[index]
        while current != NO_INDEX:
            if getattr(self._records[current], flag):
                return current
            current = links[current]
        return None

    def prev_section_start(self, index: int) -> Optional[int]:
        return self.traverse_check(index, False, "section")

    def next_section_start(self, index: int) -> Optional[int]:
        return self.traverse_check(index, True, "section")

    def prev_chapter_start(self, index: int) -> Optional[int]:
        return self.traverse_check(index, False, "chapter")

    def next_chapter_start(self, index: int) -> Optional[int]:
        return self.traverse_check(index, True, "chapter")

    def apply_breaks(self, sentence_numbers: Iterable[int]) -> List[int]:
        """Flag the first word of each listed sentence as a section start.

        Returns the indices that were flagged, in chain order.
        """
        wanted = set(sentence_numbers)
        flagged: List[int] = []
        previous_sentence: Optional[int] = None
        for index, record in enumerate(self._records):
            number = record.sentence_number
            if number != previous_sentence and number in wanted:
                record.start_section = True
                flagged.append(index)
                wanted.discard(number)
            previous_sentence = number
        return flagged

    def _check(self, index: int) -> None:
        if not 0 <= index < len(self._records):
            raise IndexError("word index {} out of range".format(index))
