"""
Page-group chunking for PDF statements.

A single model call cannot reliably read a whole multi-page statement, so the
document is split into groups of ``pages_per_chunk`` pages.  Each group is
written out as its own PDF and can be submitted independently.
"""

import io
import logging

from PyPDF2 import PdfReader, PdfWriter

from statement_extractor.config import PAGES_PER_CHUNK
from statement_extractor.errors import DocumentParseError
from statement_extractor.models import Chunk

logger = logging.getLogger(__name__)


def _open_pdf(data: bytes) -> PdfReader:
    if not data:
        raise DocumentParseError("Document is empty.")
    try:
        reader = PdfReader(io.BytesIO(data))
        page_count = len(reader.pages)
    except Exception as e:
        raise DocumentParseError(f"Could not read PDF: {e}") from e
    if page_count == 0:
        raise DocumentParseError("Document contains no pages.")
    return reader


def count_pages(data: bytes) -> int:
    """Return the number of pages in a PDF held in memory."""
    return len(_open_pdf(data).pages)


def _chunk_size(pages_per_chunk: int | None) -> int:
    size = pages_per_chunk if pages_per_chunk is not None else PAGES_PER_CHUNK
    if size < 1:
        raise ValueError("pages_per_chunk must be at least 1")
    return size


def chunk_count(total_pages: int, pages_per_chunk: int | None = None) -> int:
    """Number of chunks a ``total_pages`` document splits into (ceiling division)."""
    size = _chunk_size(pages_per_chunk)
    return -(-total_pages // size)


def split_pdf(data: bytes, pages_per_chunk: int | None = None) -> list[Chunk]:
    """
    Split *data* into ordered page-group chunks.

    Returns ``ceil(pages / pages_per_chunk)`` chunks; the last one may be
    shorter.  Raises ``DocumentParseError`` for malformed or empty documents.
    """
    size = _chunk_size(pages_per_chunk)

    reader = _open_pdf(data)
    total = len(reader.pages)

    chunks: list[Chunk] = []
    for index, start in enumerate(range(0, total, size)):
        end = min(start + size, total)
        writer = PdfWriter()
        try:
            for page_no in range(start, end):
                writer.add_page(reader.pages[page_no])
            buf = io.BytesIO()
            writer.write(buf)
        except Exception as e:
            raise DocumentParseError(
                f"Could not extract pages {start + 1}-{end}: {e}"
            ) from e

        chunks.append(Chunk(
            data=buf.getvalue(),
            start_page=start + 1,
            end_page=end,
            index=index,
        ))

    logger.info("Split %d pages into %d chunks of up to %d pages", total, len(chunks), size)
    return chunks
