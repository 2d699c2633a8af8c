"""
Tests for the think-tag filter:
1. spans are stripped whole and partial markers are held back
2. output is identical for every split of the input
"""

import pytest

from domain.streaming.think_filter import ThinkTagFilter


def run_filter(chunks):
    think_filter = ThinkTagFilter()
    output = "".join(think_filter.feed(chunk) for chunk in chunks)
    return output + think_filter.flush()


SAMPLES = [
    "Hello <think>secret plan</think>world",
    "<think>only reasoning</think>",
    "a < b and <thinking> is not a tag",
    "before <think>one</think> middle <think>two</think> after",
    "unterminated <think>never closed",
    "trailing partial <thi",
    "nested-looking <think>x <think> y</think> z",
]


class TestThinkTagFilter:
    """Reasoning spans never reach the client."""

    def test_plain_text_passes_through(self):
        assert ThinkTagFilter().feed("no tags here") == "no tags here"

    def test_complete_span_removed(self):
        assert run_filter(["Hello <think>secret</think>world"]) == "Hello world"

    def test_marker_split_across_chunks(self):
        think_filter = ThinkTagFilter()
        assert think_filter.feed("Hi <thi") == "Hi "
        assert think_filter.feed("nk>hidden</thi") == ""
        assert think_filter.feed("nk> there") == " there"
        assert think_filter.flush() == ""

    def test_held_back_fragment_released_when_not_a_marker(self):
        think_filter = ThinkTagFilter()
        assert think_filter.feed("x <") == "x "
        assert think_filter.feed("b") == "<b"

    def test_flush_releases_trailing_fragment(self):
        think_filter = ThinkTagFilter()
        assert think_filter.feed("price <") == "price "
        assert think_filter.flush() == "<"

    def test_flush_inside_span_drops_text(self):
        think_filter = ThinkTagFilter()
        assert think_filter.feed("visible<think>hidden</th") == "visible"
        assert think_filter.flush() == ""

    def test_only_marker_prefix_is_held(self):
        # "<x" can never become a marker, so nothing is held
        think_filter = ThinkTagFilter()
        assert think_filter.feed("a <x") == "a <x"
        assert think_filter.flush() == ""


class TestSplitInvariance:
    """Any chunking of the input yields the unsplit output."""

    @pytest.mark.parametrize("sample", SAMPLES)
    def test_every_two_way_split(self, sample):
        expected = run_filter([sample])
        for cut in range(len(sample) + 1):
            assert run_filter([sample[:cut], sample[cut:]]) == expected, f"cut at {cut}"

    @pytest.mark.parametrize("sample", SAMPLES)
    def test_character_by_character(self, sample):
        assert run_filter(list(sample)) == run_filter([sample])

    @pytest.mark.parametrize("sample", SAMPLES)
    def test_three_way_splits(self, sample):
        expected = run_filter([sample])
        for first in range(0, len(sample) + 1, 3):
            for second in range(first, len(sample) + 1, 4):
                chunks = [sample[:first], sample[first:second], sample[second:]]
                assert run_filter(chunks) == expected
