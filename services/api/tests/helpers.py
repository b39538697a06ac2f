"""
Test helpers: generated drawing sets and a scripted inferencer.
"""
from typing import Dict, List, Optional

from fpdf import FPDF

from core.vision_ocr import BaseInferencer, PageMetadataResult


def make_pdf(page_texts: List[str]) -> bytes:
    """One page per entry, each carrying the given text."""
    pdf = FPDF()
    pdf.set_font("Helvetica", size=14)
    for text in page_texts:
        pdf.add_page()
        for line in text.splitlines() or [""]:
            pdf.cell(0, 10, line, new_x="LMARGIN", new_y="NEXT")
    return bytes(pdf.output())


class ScriptedInferencer(BaseInferencer):
    """Returns canned results per page number; unknown pages come back empty."""
    provider = "scripted"

    def __init__(self, results: Optional[Dict[int, PageMetadataResult]] = None, **kwargs):
        super().__init__(**kwargs)
        self.results = results or {}
        self.calls: List[int] = []

    def infer_source_page(self, pdf_bytes, page_number, candidate_projects):
        self.calls.append(page_number)
        result = self.results.get(page_number) or PageMetadataResult()
        result.page_number = page_number
        return result
