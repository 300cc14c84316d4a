"""
Tests for transcript accumulation.
"""

from src.voice.transcript import TranscriptBuffer, TranscriptFragment


def final(text):
    return TranscriptFragment(text=text, is_final=True)


def interim(text):
    return TranscriptFragment(text=text, is_final=False)


class TestTranscriptBuffer:
    """Tests for TranscriptBuffer."""

    def test_final_fragments_concatenate(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(final("remind me to"))
        buffer.append_fragment(final("call mom tomorrow"))

        assert buffer.commit_text() == "remind me to call mom tomorrow"

    def test_interim_replaces_previous_interim(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(interim("remind"))
        buffer.append_fragment(interim("remind me"))

        assert buffer.interim_text == "remind me"
        assert buffer.current_text() == "remind me"

    def test_current_text_shows_final_plus_interim(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(final("remind me to"))
        buffer.append_fragment(interim("call"))

        assert buffer.current_text() == "remind me to call"

    def test_final_clears_pending_interim(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(interim("call mum"))
        buffer.append_fragment(final("call mom"))

        assert buffer.interim_text == ""
        assert buffer.current_text() == "call mom"

    def test_commit_prefers_final_over_interim(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(final("buy milk"))
        buffer.append_fragment(interim("and eggs"))

        assert buffer.commit_text() == "buy milk"

    def test_commit_uses_interim_when_no_final(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(interim("  what's on my calendar  "))

        assert buffer.commit_text() == "what's on my calendar"

    def test_whitespace_is_normalized_at_the_seam(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(final("hello "))
        buffer.append_fragment(final(" world"))

        assert buffer.final_text == "hello world"

    def test_reset(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(final("hello"))
        buffer.append_fragment(interim("there"))
        buffer.reset()

        assert buffer.is_empty
        assert buffer.commit_text() == ""
        assert buffer.current_text() == ""

    def test_whitespace_only_is_empty(self):
        buffer = TranscriptBuffer()
        buffer.append_fragment(interim("   "))

        assert buffer.is_empty
        assert buffer.commit_text() == ""
