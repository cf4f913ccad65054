"""Tests for section suggestions (pipeline/segmentation.py)."""

from __future__ import annotations

import pytest

from tests.conftest import SEGMENTER_STDOUT
from video_digest.core.ir import AlignedTranscript, WordRecord
from video_digest.core.word_chain import WordChain
from video_digest.errors import ExternalToolFailure, OutputParseError, PreconditionNotMet
from video_digest.pipeline.segmentation import PAUSE_MARKER, SegmentationAdapter


@pytest.fixture
def settled(orchestrator, ready_digest):
    """A READY digest whose post-ready steps have finished."""
    orchestrator.shutdown()
    return orchestrator.get(ready_digest.id)


def _word(word, sentence, start=0.0):
    return WordRecord(word=word, aligned_word=word.upper(), start=start, end=start + 0.2,
                      sentence_number=sentence)


class TestSegment:

    def test_suggests_breaks(self, orchestrator, settled, happy_runner, settings):
        result = orchestrator.segment(settled.id)
        assert result.breaks == [3, 7]
        assert result.raw_line == "[3, 7]"
        assert result.to_dict() == {"breaks": [3, 7], "rawLine": "[3, 7]"}

        argv = happy_runner.calls_to("adv_seg.py")[0].argv
        assert argv[2:4] == ["eval", "seg_config.json"]
        assert argv[-1] == str(settings.sent_sep_file(settled.sent_sep_trans_name))

    def test_regenerates_missing_sentences(self, orchestrator, settled, happy_runner):
        orchestrator.store.update(settled.id, sent_sep_trans_name=None)
        before = len(happy_runner.calls_to("add_sentences.py"))

        assert orchestrator.segment(settled.id).breaks == [3, 7]
        assert len(happy_runner.calls_to("add_sentences.py")) == before + 1
        assert orchestrator.get(settled.id).sent_sep_trans_name == "{}.txt".format(settled.id)

    def test_regenerates_only_once(self, orchestrator, settled, settings):
        orchestrator.store.update(settled.id, sent_sep_trans_name=None)
        attempts = []

        def regenerate(digest_id):
            attempts.append(digest_id)
            return None

        adapter = SegmentationAdapter(settings, orchestrator.store, orchestrator.segmenter, regenerate)
        with pytest.raises(PreconditionNotMet) as info:
            adapter.segment(settled.id)
        assert attempts == [settled.id]
        assert info.value.message == "error processing transcript - please try again later"

    def test_regeneration_error_is_not_fatal_by_itself(self, orchestrator, settled, settings):
        orchestrator.store.update(settled.id, sent_sep_trans_name=None)

        def regenerate(digest_id):
            raise PreconditionNotMet("no words", digest_id=digest_id)

        adapter = SegmentationAdapter(settings, orchestrator.store, orchestrator.segmenter, regenerate)
        with pytest.raises(PreconditionNotMet) as info:
            adapter.segment(settled.id)
        assert info.value.message == "error processing transcript - please try again later"

    def test_writes_raw_transcript_without_pauses(self, orchestrator, settled, settings):
        words = [_word("so", 0), _word(PAUSE_MARKER, 0, 0.3), _word("we", 1, 0.6), _word(PAUSE_MARKER, 1, 0.9)]
        orchestrator.store.update(
            settled.id, raw_trans_name=None, align_trans=AlignedTranscript(words=words)
        )
        orchestrator.segment(settled.id)

        name = orchestrator.get(settled.id).raw_trans_name
        assert name is not None and name.endswith(".txt")
        assert settings.raw_transcript_file(name).read_text() == "so we"

    def test_segmenter_stderr_fails(self, orchestrator, settled, happy_runner):
        happy_runner.on("adv_seg.py", stdout=SEGMENTER_STDOUT, stderr="UserWarning: deprecated")
        with pytest.raises(ExternalToolFailure) as info:
            orchestrator.segment(settled.id)
        assert info.value.digest_id == settled.id
        assert str(info.value.stage) == "segment"

    def test_segmenter_exit_status_fails(self, orchestrator, settled, happy_runner):
        happy_runner.on("adv_seg.py", returncode=2)
        with pytest.raises(ExternalToolFailure):
            orchestrator.segment(settled.id)

    def test_unparseable_output(self, orchestrator, settled, happy_runner):
        happy_runner.on("adv_seg.py", stdout="a\nb\nno numbers here\nc\nd\n")
        with pytest.raises(OutputParseError) as info:
            orchestrator.segment(settled.id)
        assert info.value.digest_id == settled.id

    def test_requires_alignment(self, orchestrator, created_digest):
        with pytest.raises(PreconditionNotMet):
            orchestrator.segment(created_digest.id)


class TestApplyToChain:

    def test_flags_first_word_of_each_break(self):
        chain = WordChain.materialize([
            _word("a", 0), _word("b", 0), _word("c", 1), _word("d", 2), _word("e", 2),
        ])
        flagged = SegmentationAdapter.apply_to_chain(chain, [2, 1])
        assert flagged == [2, 3]
        assert [w.start_section for w in chain] == [False, False, True, True, False]

    def test_unknown_sentence_ignored(self):
        chain = WordChain.materialize([_word("a", 0), _word("b", 1)])
        assert SegmentationAdapter.apply_to_chain(chain, [9]) == []
