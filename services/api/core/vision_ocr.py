# services/api/core/vision_ocr.py
"""
Per-page drawing metadata inference.

The Vision backend renders a page, runs Google Cloud Vision
document_text_detection on it and reads the title block out of the text.
Inference is best effort: a failed page yields empty fields, confidence 0.5
and an `error` string. Nothing in here raises to the caller.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from google.cloud import vision
from google.oauth2 import service_account

from core.drawings import DISCIPLINE_PREFIXES, infer_discipline, normalize_drawing_number
from core.errors import PdfReadError
from core.pdf_pages import count_pages, render_page_png
from models import ProjectInfo

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5


@dataclass
class ProjectMatch:
    id: str
    name: str
    confidence: float


@dataclass
class PageMetadataResult:
    page_number: int = 1
    drawing_number: Optional[str] = None
    sheet_number: Optional[str] = None
    sheet_title: Optional[str] = None
    discipline: Optional[str] = None
    revision: Optional[str] = None
    scale: Optional[str] = None
    confidence: float = DEFAULT_CONFIDENCE
    project_match: Optional[ProjectMatch] = None
    raw_text: Optional[str] = None
    error: Optional[str] = None


@dataclass
class InferenceSummary:
    unique_drawings: List[str] = field(default_factory=list)
    sheet_titles: List[str] = field(default_factory=list)
    disciplines: List[str] = field(default_factory=list)
    project_match: Optional[ProjectMatch] = None


@dataclass
class MultiPageInference:
    page_count: int
    pages: List[PageMetadataResult] = field(default_factory=list)
    summary: InferenceSummary = field(default_factory=InferenceSummary)
    error: Optional[str] = None

    def for_page(self, page_number: int) -> Optional[PageMetadataResult]:
        for p in self.pages:
            if p.page_number == page_number:
                return p
        return None


class MetadataInferencer(Protocol):
    provider: str

    def infer_page_metadata(
        self,
        page_bytes: bytes,
        mime_type: str,
        candidate_projects: Sequence[ProjectInfo],
    ) -> PageMetadataResult:
        ...

    async def infer_all_pages(
        self,
        pdf_bytes: bytes,
        candidate_projects: Sequence[ProjectInfo],
        *,
        max_pages: int = 100,
        concurrency: int = 3,
    ) -> MultiPageInference:
        ...


# ---- Title block parsing ------------------------------------------------------

_PREFIX_ALT = "|".join(sorted(DISCIPLINE_PREFIXES, key=len, reverse=True))
_DRAWING_TOKEN = rf"(?:{_PREFIX_ALT})-?\d{{1,3}}(?:[.\-]\d{{1,3}})?"

_LABELED_DRAWING_RE = re.compile(
    rf"\b(?:SHEET|DWG|DRAWING)\s*(?:NO\.?|NUMBER|#)\s*[:.]?\s*({_DRAWING_TOKEN})\b"
)
_BARE_DRAWING_RE = re.compile(rf"\b({_DRAWING_TOKEN})\b")
_REVISION_RE = re.compile(r"\bREV(?:ISION)?\b\.?\s*(?:NO\.?)?\s*[:#]?\s*([A-Z0-9]{1,3})\b")
_SCALE_LABEL_RE = re.compile(r"\bSCALE\b[ \t]*[:\-]?[ \t]*([^\n]+)")
_SCALE_RATIO_RE = re.compile(r"\b1\s*:\s*\d+\b")
_SHEET_OF_RE = re.compile(r"\bSHEET\s+(\d+)\s+OF\s+\d+\b")

_SHEET_KEYWORDS = (
    "PLAN", "ELEVATION", "SECTION", "DETAIL", "SCHEDULE", "SHEET",
    "NOTES", "DIAGRAM", "LAYOUT", "RISER", "SITE",
)
_TITLE_NOISE = ("SCALE", "REV", "DRAWN", "CHECKED", "DATE", "PROJECT NO")

_DISCIPLINE_WORDS = {
    "FIRE PROTECTION": "FIRE_PROTECTION",
    "ARCHITECTURAL": "ARCHITECTURAL",
    "STRUCTURAL": "STRUCTURAL",
    "MECHANICAL": "MECHANICAL",
    "ELECTRICAL": "ELECTRICAL",
    "PLUMBING": "PLUMBING",
    "LANDSCAPE": "LANDSCAPE",
    "CIVIL": "CIVIL",
}


def _find_scale(upper: str) -> Optional[str]:
    m = _SCALE_LABEL_RE.search(upper)
    if m:
        value = m.group(1).strip()[:40]
        if value:
            return value
    if re.search(r"\bN\.?T\.?S\.?(?:\s|$)", upper) or "NOT TO SCALE" in upper:
        return "NTS"
    if "AS NOTED" in upper:
        return "AS NOTED"
    m = _SCALE_RATIO_RE.search(upper)
    if m:
        return m.group(0).replace(" ", "")
    return None


def _find_sheet_title(lines: List[str]) -> Optional[str]:
    for line in lines:
        candidate = line.strip()
        if not 4 <= len(candidate) <= 80:
            continue
        if candidate != candidate.upper() or not re.search(r"[A-Z]{3}", candidate):
            continue
        if any(noise in candidate for noise in _TITLE_NOISE):
            continue
        if _LABELED_DRAWING_RE.search(candidate) or _SHEET_OF_RE.search(candidate):
            continue
        if any(re.search(rf"\b{kw}S?\b", candidate) for kw in _SHEET_KEYWORDS):
            return re.sub(r"\s+", " ", candidate)
    return None


def parse_title_block(text: str) -> Dict[str, Optional[str]]:
    """
    Pull drawing metadata out of raw page text.

    Drawing number: labeled (SHEET NO / DWG NO / DRAWING NUMBER) first,
    otherwise the last discipline-prefixed token on the page, since title
    blocks sit bottom-right and the text is read top-down.
    """
    out: Dict[str, Optional[str]] = {
        "drawing_number": None,
        "sheet_number": None,
        "sheet_title": None,
        "discipline": None,
        "revision": None,
        "scale": None,
    }
    if not text or not text.strip():
        return out

    upper = text.upper()
    lines = [ln for ln in upper.splitlines() if ln.strip()]

    m = _LABELED_DRAWING_RE.search(upper)
    if m:
        out["drawing_number"] = m.group(1)
    else:
        bare = _BARE_DRAWING_RE.findall(upper)
        if bare:
            out["drawing_number"] = bare[-1]

    m = _REVISION_RE.search(upper)
    if m:
        out["revision"] = m.group(1)

    m = _SHEET_OF_RE.search(upper)
    if m:
        out["sheet_number"] = m.group(1)

    out["scale"] = _find_scale(upper)
    out["sheet_title"] = _find_sheet_title(lines)

    discipline = infer_discipline(out["drawing_number"])
    if not discipline:
        for word, value in _DISCIPLINE_WORDS.items():
            if word in upper:
                discipline = value
                break
    out["discipline"] = discipline
    return out


def match_project_to_list(
    text: Optional[str],
    projects: Sequence[ProjectInfo],
) -> Optional[ProjectMatch]:
    """
    Score candidate projects against page text.

    Exact name -> 1.0, partial name-token overlap -> ratio * 0.9,
    street segment of the address -> 0.7.
    """
    if not text or not projects:
        return None

    lowered = text.lower()
    text_tokens = set(re.findall(r"[a-z0-9]+", lowered))

    best: Optional[ProjectInfo] = None
    best_score = 0.0

    for project in projects:
        name = (project.name or "").strip().lower()
        if name and name in lowered:
            return ProjectMatch(id=project.id, name=project.name, confidence=1.0)

        tokens = [t for t in re.findall(r"[a-z0-9]+", name) if len(t) > 2]
        if tokens:
            hits = sum(1 for t in tokens if t in text_tokens)
            score = (hits / len(tokens)) * 0.9
            if hits and score > best_score:
                best, best_score = project, score

        street = (project.address or "").split(",")[0].strip().lower()
        if street and street in lowered and 0.7 > best_score:
            best, best_score = project, 0.7

    if best is None:
        return None
    return ProjectMatch(id=best.id, name=best.name, confidence=round(best_score, 3))


def estimate_confidence(response: Any) -> float:
    """
    Mean word confidence (0-1) from Vision's document_text_detection.
    Falls back to 0.5 when Vision reports none.
    """
    try:
        fta = response.full_text_annotation
        if not fta or not fta.pages:
            return DEFAULT_CONFIDENCE

        scores = []
        for page in fta.pages:
            for block in page.blocks:
                for para in block.paragraphs:
                    for word in para.words:
                        if word.confidence:
                            scores.append(word.confidence)

        if not scores:
            return DEFAULT_CONFIDENCE
        return float(min(1.0, max(0.0, sum(scores) / len(scores))))
    except AttributeError:
        return DEFAULT_CONFIDENCE


def summarize_pages(pages: Sequence[PageMetadataResult]) -> InferenceSummary:
    summary = InferenceSummary()
    seen_drawings, seen_titles, seen_disciplines = set(), set(), set()

    for page in pages:
        if page.drawing_number and page.drawing_number not in seen_drawings:
            seen_drawings.add(page.drawing_number)
            summary.unique_drawings.append(page.drawing_number)
        if page.sheet_title and page.sheet_title not in seen_titles:
            seen_titles.add(page.sheet_title)
            summary.sheet_titles.append(page.sheet_title)
        if page.discipline and page.discipline not in seen_disciplines:
            seen_disciplines.add(page.discipline)
            summary.disciplines.append(page.discipline)
        # highest confidence project match wins
        if page.project_match and (
            summary.project_match is None
            or page.project_match.confidence > summary.project_match.confidence
        ):
            summary.project_match = page.project_match

    return summary


# ---- Inferencers --------------------------------------------------------------

class BaseInferencer:
    """
    Shared bulk driver. Subclasses implement `infer_page_metadata`.
    """
    provider = "none"

    def __init__(self, *, timeout_seconds: float = 30.0, render_scale: float = 2.0):
        self.timeout_seconds = timeout_seconds
        self.render_scale = render_scale

    def infer_page_metadata(
        self,
        page_bytes: bytes,
        mime_type: str,
        candidate_projects: Sequence[ProjectInfo],
    ) -> PageMetadataResult:
        raise NotImplementedError

    def infer_source_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        candidate_projects: Sequence[ProjectInfo],
    ) -> PageMetadataResult:
        """Render one page of the full document and infer from the image."""
        png = render_page_png(pdf_bytes, page_number, scale=self.render_scale)
        result = self.infer_page_metadata(png, "image/png", candidate_projects)
        result.page_number = page_number
        return result

    async def _infer_one(
        self,
        sem: asyncio.Semaphore,
        pdf_bytes: bytes,
        page_number: int,
        candidate_projects: Sequence[ProjectInfo],
    ) -> PageMetadataResult:
        async with sem:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(
                        self.infer_source_page, pdf_bytes, page_number, candidate_projects
                    ),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("[vision_ocr] page %s timed out after %ss", page_number, self.timeout_seconds)
                return PageMetadataResult(
                    page_number=page_number, error=f"Page {page_number} analysis timed out"
                )
            except Exception as e:
                logger.warning("[vision_ocr] page %s failed: %s", page_number, e)
                return PageMetadataResult(
                    page_number=page_number, error=f"Page analysis failed: {e}"
                )

    async def infer_all_pages(
        self,
        pdf_bytes: bytes,
        candidate_projects: Sequence[ProjectInfo],
        *,
        max_pages: int = 100,
        concurrency: int = 3,
    ) -> MultiPageInference:
        """
        Infer metadata for pages 1..min(page_count, max_pages) with at most
        `concurrency` calls in flight. Results come back in page order.
        """
        try:
            page_count = count_pages(pdf_bytes)
        except PdfReadError as e:
            return MultiPageInference(page_count=0, error=e.message)

        to_process = min(page_count, max(0, max_pages))
        sem = asyncio.Semaphore(max(1, concurrency))
        results = await asyncio.gather(
            *(
                self._infer_one(sem, pdf_bytes, n, candidate_projects)
                for n in range(1, to_process + 1)
            )
        )

        failed = sum(1 for r in results if r.error)
        logger.info(
            "[vision_ocr] inferred %d/%d pages (%d failed, provider=%s)",
            to_process, page_count, failed, self.provider,
        )
        return MultiPageInference(
            page_count=page_count,
            pages=list(results),
            summary=summarize_pages(results),
        )


class NullInferencer(BaseInferencer):
    """Manual entry only: every page starts empty with default confidence."""
    provider = "none"

    def infer_page_metadata(self, page_bytes, mime_type, candidate_projects) -> PageMetadataResult:
        return PageMetadataResult()

    def infer_source_page(self, pdf_bytes, page_number, candidate_projects) -> PageMetadataResult:
        return PageMetadataResult(page_number=page_number)


class VisionMetadataInferencer(BaseInferencer):
    provider = "google-vision"

    def __init__(
        self,
        client: Optional[vision.ImageAnnotatorClient] = None,
        *,
        sa_json_path: str = "",
        timeout_seconds: float = 30.0,
        render_scale: float = 2.0,
    ):
        super().__init__(timeout_seconds=timeout_seconds, render_scale=render_scale)
        self._client = client
        self._sa_json_path = sa_json_path

    @classmethod
    def from_settings(cls, settings) -> "VisionMetadataInferencer":
        return cls(
            sa_json_path=settings.resolved_google_sa_json(),
            timeout_seconds=settings.vision_timeout_seconds,
            render_scale=settings.vision_render_scale,
        )

    @property
    def client(self) -> vision.ImageAnnotatorClient:
        """
        Build the Vision client lazily: service account JSON when configured,
        application default credentials otherwise.
        """
        if self._client is None:
            if self._sa_json_path:
                creds = service_account.Credentials.from_service_account_file(self._sa_json_path)
                self._client = vision.ImageAnnotatorClient(credentials=creds)
            else:
                self._client = vision.ImageAnnotatorClient()
        return self._client

    def _to_image(self, page_bytes: bytes, mime_type: str) -> bytes:
        if mime_type == "application/pdf":
            return render_page_png(page_bytes, 1, scale=self.render_scale)
        if mime_type.startswith("image/"):
            return page_bytes
        raise ValueError(f"Unsupported mime type for inference: {mime_type}")

    def infer_page_metadata(
        self,
        page_bytes: bytes,
        mime_type: str,
        candidate_projects: Sequence[ProjectInfo],
    ) -> PageMetadataResult:
        try:
            image_bytes = self._to_image(page_bytes, mime_type)
            response = self.client.document_text_detection(
                image=vision.Image(content=image_bytes),
                timeout=self.timeout_seconds,
            )

            if response.error and response.error.message:
                logger.error(f"[vision_ocr] Vision error: {response.error.message}")
                return PageMetadataResult(error=f"Vision error: {response.error.message}")

            text = ""
            if response.full_text_annotation and response.full_text_annotation.text:
                text = response.full_text_annotation.text
            elif response.text_annotations:
                text = response.text_annotations[0].description

            logger.info(f"[vision_ocr] Raw OCR text: {repr(text)[:200]}")

            fields = parse_title_block(text)
            if fields["drawing_number"]:
                fields["drawing_number"] = normalize_drawing_number(fields["drawing_number"])

            return PageMetadataResult(
                confidence=estimate_confidence(response),
                project_match=match_project_to_list(text, candidate_projects),
                raw_text=text or None,
                **fields,
            )
        except Exception as e:
            logger.exception(f"[vision_ocr] Failed to infer page metadata: {e}")
            return PageMetadataResult(error=f"Page analysis failed: {e}")


def make_inferencer(settings) -> BaseInferencer:
    backend = (settings.inference_backend or "vision").lower()
    if backend == "none":
        return NullInferencer(timeout_seconds=settings.vision_timeout_seconds)
    if backend == "vision":
        return VisionMetadataInferencer.from_settings(settings)
    raise ValueError(f"Unknown INFERENCE_BACKEND: {settings.inference_backend}")
