"""Text chunking.

Character windows break at the most natural boundary found near the end of
each window and overlap their successor by a fixed amount. Offsets are kept so
that every chunk can be traced back to its exact span of the source text.
"""

from pydantic import BaseModel

# Preferred break points, strongest first. The separator stays with the preceding chunk.
SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", " ")
# Fraction of the window, counted from its end, searched for a separator
SEARCH_FRACTION = 0.2
MIN_SEARCH_WINDOW = 20


class TextChunk(BaseModel):
    """A span [start, end) of the source text, optionally tied to a page."""

    index: int
    text: str
    start: int
    end: int
    page: int | None = None


def _validate(chunk_size: int, overlap: int) -> None:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}.")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError(f"overlap must be in [0, chunk_size), got {overlap} for chunk_size {chunk_size}.")


def _find_breakpoint(text: str, start: int, end: int, chunk_size: int) -> int:
    """Return the position right after the best separator in the tail of [start, end), or end."""
    search_window = min(max(int(chunk_size * SEARCH_FRACTION), MIN_SEARCH_WINDOW), chunk_size)
    search_start = max(start, end - search_window)
    for separator in SEPARATORS:
        pos = text.rfind(separator, search_start, end)
        if pos != -1:
            return pos + len(separator)
    return end


def chunk_spans(text: str, chunk_size: int, overlap: int) -> list[tuple[int, int]]:
    """Compute the (start, end) offsets of all chunks of text.

    Every iteration moves the start strictly forward, so the loop always ends.
    Consecutive spans overlap or touch; the last span ends at len(text).

    Raises:
        ValueError: If chunk_size is not positive or overlap is not in [0, chunk_size).
    """
    _validate(chunk_size, overlap)
    length = len(text)
    if length == 0:
        return []
    if length <= chunk_size:
        return [(0, length)]

    spans: list[tuple[int, int]] = []
    start = 0
    while True:
        window_end = start + chunk_size
        if window_end >= length:
            spans.append((start, length))
            return spans
        breakpoint_ = _find_breakpoint(text, start, window_end, chunk_size)
        spans.append((start, breakpoint_))
        # clamp: at least one unit of progress, never past the breakpoint
        start = min(max(breakpoint_ - overlap, start + 1), breakpoint_)


def split_text(text: str, chunk_size: int, overlap: int) -> list[str]:
    """Split text into overlapping, boundary-aware chunks.

    Args:
        text (str): The full text.
        chunk_size (int): Target chunk length in characters.
        overlap (int): Characters shared by consecutive chunks.

    Returns:
        list[str]: Ordered chunks. [text] if it fits in one chunk, [] if empty.
    """
    return [text[start:end] for start, end in chunk_spans(text, chunk_size, overlap)]


def chunk_pages(pages: list[tuple[int | None, str]], chunk_size: int, overlap: int) -> list[TextChunk]:
    """Chunk every page and number the chunks across the whole document.

    Whitespace-only chunks carry nothing searchable and are dropped.

    Args:
        pages (list[tuple[int | None, str]]): (page number or None, page text) pairs in order.
        chunk_size (int): Target chunk length in characters.
        overlap (int): Characters shared by consecutive chunks of one page.

    Returns:
        list[TextChunk]: Chunks with document-wide indices starting at 0.
    """
    chunks: list[TextChunk] = []
    for page, page_text in pages:
        for start, end in chunk_spans(page_text, chunk_size, overlap):
            piece = page_text[start:end]
            if not piece.strip():
                continue
            chunks.append(TextChunk(index=len(chunks), text=piece, start=start, end=end, page=page))
    return chunks


def split_tokens(text: str, window: int, overlap: int) -> list[str]:
    """Token-based variant: whitespace tokens, windows of `window` tokens, stride window - overlap.

    The final partial window is emitted once and ends exactly at the last token.
    Tokens are re-joined with single spaces.

    Raises:
        ValueError: If window is not positive or overlap is not in [0, window).
    """
    _validate(window, overlap)
    words = text.split()
    if not words:
        return []
    stride = window - overlap
    chunks: list[str] = []
    for i in range(0, len(words), stride):
        end = min(i + window, len(words))
        chunks.append(" ".join(words[i:end]))
        if end == len(words):
            break
    return chunks
