"""Text extraction from uploaded bytes.

Plain-text formats are decoded as-is. PDFs are read page by page with pypdf
so chunks can cite the page they came from.
"""

import io

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from shared.models.errors import ValidationError

TEXT_FILE_TYPES = frozenset({".txt", ".md", ".json", ".csv"})
PDF_FILE_TYPE = ".pdf"


def decode_text(data: bytes) -> str:
    """Decode UTF-8 (BOM tolerated), falling back to Latin-1 which never fails."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _extract_pdf(data: bytes) -> list[tuple[int | None, str]]:
    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ValidationError("Encrypted PDFs are not supported.")
        return [(number, page.extract_text() or "") for number, page in enumerate(reader.pages, start=1)]
    except PyPdfError as exc:
        raise ValidationError(f"Could not read PDF: {exc}") from exc


def extract_pages(data: bytes, file_type: str) -> list[tuple[int | None, str]]:
    """Extract text as (page number, text) pairs.

    Args:
        data (bytes): Raw file content.
        file_type (str): Lower-case extension including the dot.

    Returns:
        list[tuple[int | None, str]]: One entry per PDF page (1-based), or a
            single (None, text) entry for plain-text formats.

    Raises:
        ValidationError: For unsupported types and unreadable PDFs.
    """
    if file_type == PDF_FILE_TYPE:
        return _extract_pdf(data)
    if file_type in TEXT_FILE_TYPES:
        return [(None, decode_text(data))]
    raise ValidationError(f"No text extractor for file type '{file_type}'.")
