# services/api/core/pdf_pages.py
"""
Single-page PDF extraction and page rendering (python-pdfium2).

PDFium is not thread-safe, so every call into it (open, import, save,
render, close) runs under PDFIUM_LOCK. Encoding the rendered bitmap to PNG
happens after the lock is released. The source buffer is only ever read.
"""
from __future__ import annotations

import io
import logging
import threading

import pypdfium2 as pdfium

from core.errors import PageExtractionError, PdfReadError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"

# one lock for the whole process; not re-entrant, helpers below expect it held
PDFIUM_LOCK = threading.Lock()


def is_pdf_bytes(data: bytes) -> bool:
    """Magic-byte check (the header may be preceded by whitespace)."""
    if not data:
        return False
    return data[:1024].lstrip().startswith(PDF_MAGIC)


def _open(pdf_bytes: bytes) -> pdfium.PdfDocument:
    try:
        return pdfium.PdfDocument(pdf_bytes)
    except pdfium.PdfiumError as e:
        raise PdfReadError(
            "Failed to read PDF. File may be corrupted or password-protected."
        ) from e


def count_pages(pdf_bytes: bytes) -> int:
    """
    Return the number of pages in the PDF.

    Raises:
        PdfReadError: the buffer is not a readable PDF.
    """
    with PDFIUM_LOCK:
        doc = _open(pdf_bytes)
        try:
            return len(doc)
        finally:
            doc.close()


def extract_page(source_pdf: bytes, page_number: int) -> bytes:
    """
    Copy page `page_number` (1-based) of `source_pdf` into a new single-page PDF.

    Output is built fully in memory and only returned once saved, so a
    failure never leaves partial output behind.

    Raises:
        PageExtractionError: corrupt source, out-of-range page, or pdfium failure.
    """
    with PDFIUM_LOCK:
        return _extract_locked(source_pdf, page_number)


def _extract_locked(source_pdf: bytes, page_number: int) -> bytes:
    try:
        src = pdfium.PdfDocument(source_pdf)
    except pdfium.PdfiumError as e:
        raise PageExtractionError(f"Cannot open source PDF: {e}") from e

    out = None
    try:
        page_count = len(src)
        if page_number < 1 or page_number > page_count:
            raise PageExtractionError(
                f"Page {page_number} is out of range. PDF has {page_count} pages."
            )

        out = pdfium.PdfDocument.new()
        # pdfium uses 0-based page indices
        out.import_pages(src, pages=[page_number - 1])
        if len(out) != 1:
            raise PageExtractionError(f"Page {page_number} could not be copied")

        buf = io.BytesIO()
        out.save(buf)
        return buf.getvalue()
    except PageExtractionError:
        raise
    except Exception as e:
        logger.warning("[pdf_pages] extract failed for page %s: %s", page_number, e)
        raise PageExtractionError(f"Failed to extract page {page_number}: {e}") from e
    finally:
        if out is not None:
            out.close()
        src.close()


def render_page_png(pdf_bytes: bytes, page_number: int, scale: float = 2.0) -> bytes:
    """
    Render page `page_number` (1-based) to PNG bytes.

    Rough DPI = 72 * scale (2.0 ~ 144 DPI).
    """
    with PDFIUM_LOCK:
        doc = _open(pdf_bytes)
        try:
            if page_number < 1 or page_number > len(doc):
                raise PageExtractionError(
                    f"Page {page_number} is out of range. PDF has {len(doc)} pages."
                )
            page = doc[page_number - 1]
            try:
                bitmap = page.render(scale=scale)
                try:
                    # copy out of pdfium-owned memory before unlocking
                    img = bitmap.to_pil().convert("RGB")
                finally:
                    bitmap.close()
            finally:
                page.close()
        finally:
            doc.close()

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
