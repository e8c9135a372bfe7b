"""
Tests for shared/helper/HelperChunker.py
Boundary-aware character chunking and the token-window variant.
"""

import pytest

from shared.helper.HelperChunker import chunk_pages, chunk_spans, split_text, split_tokens

SENTENCE = "The quick brown fox jumps over the lazy dog. "


def _reconstruct(text: str, spans: list[tuple[int, int]]) -> str:
    out = []
    covered = 0
    for start, end in spans:
        out.append(text[max(covered, start):end])
        covered = max(covered, end)
    return "".join(out)


class TestSplitText:
    """Test character chunking."""

    def test_empty_text_returns_empty(self):
        assert split_text("", 500, 50) == []

    def test_short_text_is_single_chunk(self):
        assert split_text("hello world", 500, 50) == ["hello world"]

    def test_text_of_exactly_chunk_size_is_single_chunk(self):
        text = "a" * 500
        assert split_text(text, 500, 50) == [text]

    def test_1200_chars_gives_three_overlapping_chunks(self):
        """1200 chars of sentences, size 500, overlap 50 -> 3 chunks."""
        text = (SENTENCE * 30)[:1200]
        spans = chunk_spans(text, 500, 50)

        assert len(spans) == 3
        assert all(end - start <= 500 for start, end in spans)
        for (_, prev_end), (next_start, _) in zip(spans, spans[1:]):
            assert next_start < prev_end
        assert spans[-1][1] == len(text)

    def test_breaks_after_sentence_end(self):
        text = (SENTENCE * 30)[:1200]
        chunks = split_text(text, 500, 50)
        assert chunks[0].endswith(". ")

    def test_prefers_paragraph_break(self):
        text = "x" * 450 + "\n\n" + "y" * 300 + ". " + "z" * 200
        chunks = split_text(text, 500, 50)
        assert chunks[0] == "x" * 450 + "\n\n"

    def test_hard_cut_without_separators(self):
        text = "a" * 1200
        spans = chunk_spans(text, 500, 50)
        assert spans[0] == (0, 500)
        assert spans[1][0] == 450

    @pytest.mark.parametrize("size,overlap", [(500, 50), (100, 0), (37, 36), (10, 9)])
    def test_spans_reconstruct_the_text(self, size, overlap):
        text = "Lorem ipsum dolor sit amet.\n\nConsectetur adipiscing elit! " * 40
        spans = chunk_spans(text, size, overlap)
        assert _reconstruct(text, spans) == text
        assert all(0 < end - start <= size for start, end in spans)

    def test_progress_with_maximal_overlap(self):
        text = "word " * 200
        spans = chunk_spans(text, 10, 9)
        starts = [start for start, _ in spans]
        assert starts == sorted(set(starts))

    @pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (100, 100), (100, -1)])
    def test_invalid_parameters_raise(self, size, overlap):
        with pytest.raises(ValueError):
            split_text("abc", size, overlap)


class TestChunkPages:
    """Test page-aware chunking used by ingestion."""

    def test_indices_are_document_wide(self):
        pages = [(1, SENTENCE * 20), (2, SENTENCE * 20)]
        chunks = chunk_pages(pages, 500, 50)

        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert {c.page for c in chunks} == {1, 2}
        assert chunks[0].page == 1 and chunks[-1].page == 2

    def test_offsets_point_into_page_text(self):
        page_text = SENTENCE * 20
        for chunk in chunk_pages([(None, page_text)], 200, 20):
            assert page_text[chunk.start:chunk.end] == chunk.text

    def test_blank_pages_are_dropped(self):
        chunks = chunk_pages([(1, "   \n "), (2, "content"), (3, "")], 500, 50)
        assert len(chunks) == 1
        assert chunks[0].page == 2
        assert chunks[0].index == 0


class TestSplitTokens:
    """Test the token-window variant."""

    def test_windows_and_stride(self):
        text = " ".join(f"w{i}" for i in range(10))
        chunks = split_tokens(text, 4, 1)
        assert chunks == ["w0 w1 w2 w3", "w3 w4 w5 w6", "w6 w7 w8 w9"]

    def test_final_partial_window_emitted_once(self):
        text = " ".join(f"w{i}" for i in range(11))
        chunks = split_tokens(text, 4, 1)
        assert chunks[-1] == "w9 w10"
        assert sum(chunk.endswith("w10") for chunk in chunks) == 1

    def test_short_text_single_window(self):
        assert split_tokens("a  b\n c", 500, 50) == ["a b c"]

    def test_blank_text(self):
        assert split_tokens("   ", 5, 1) == []
