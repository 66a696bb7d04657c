"""
Evidence Content
================

Turns stored evidence into the text that extraction and provenance checks
read. Precedence: a parsed artifact's text if one exists, otherwise text
parsed from HTML, otherwise the raw content.

PDF snapshots are stored base64-encoded; their text layer is parsed once
with pypdf and kept as an EvidenceArtifact.

Version: 0.1.0
"""

import base64
import binascii
import io
import re

from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from shared.logging import get_logger
from shared.models import Evidence, EvidenceArtifact
from services.regulatory_truth.errors import EvidenceNotFoundError
from services.regulatory_truth.storage import RegulatoryStore

logger = get_logger(__name__)

PDF_TEXT_ARTIFACT = "pdf_text"

_BLOCK_TAGS = [
    "p", "div", "li", "tr", "td", "th", "section", "article",
    "h1", "h2", "h3", "h4", "h5", "h6", "br", "table", "ul", "ol",
]


def html_to_text(html: str) -> str:
    """
    Visible text of an HTML document.

    Inline markup is joined without separators so sentences split across
    tags (``je <b>25%</b>.``) stay contiguous; block elements end a line.
    """
    soup = BeautifulSoup(html, "lxml")

    for element in soup(["script", "style", "noscript", "template"]):
        element.decompose()

    for element in soup.find_all(_BLOCK_TAGS):
        element.append("\n")

    text = soup.get_text()
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r" ?\n ?", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def pdf_to_text(data: bytes) -> str:
    """
    Text layer of a PDF.

    Pages that fail to parse are skipped; an unreadable document yields
    an empty string.
    """
    try:
        reader = PdfReader(io.BytesIO(data))
    except PdfReadError as e:
        logger.warning("pdf_unreadable", error=str(e))
        return ""

    pages: list[str] = []
    for number, page in enumerate(reader.pages, start=1):
        try:
            page_text = page.extract_text()
        except (PdfReadError, ValueError, KeyError) as e:
            logger.warning("pdf_page_extraction_failed", page=number, error=str(e))
            continue
        if page_text:
            pages.append(page_text)

    return "\n\n".join(pages)


def decode_pdf(raw_content: str) -> bytes:
    """Decode a base64 PDF snapshot."""
    try:
        return base64.b64decode(raw_content, validate=True)
    except (binascii.Error, ValueError):
        return raw_content.encode("latin-1", errors="replace")


class EvidenceContentProvider:
    """Resolves the extractable text of evidence snapshots."""

    def __init__(self, store: RegulatoryStore) -> None:
        self._store = store

    async def ensure_artifact(self, evidence: Evidence) -> Evidence:
        """
        Parse and attach the PDF text artifact if it is missing.

        Non-PDF evidence is returned unchanged.
        """
        if evidence.content_type != "pdf" or evidence.artifact_id is not None:
            return evidence

        text = pdf_to_text(decode_pdf(evidence.raw_content))
        if not text.strip():
            logger.warning("pdf_without_text_layer", evidence_id=evidence.id, url=evidence.url)

        artifact = EvidenceArtifact(evidence_id=evidence.id, kind=PDF_TEXT_ARTIFACT, text=text)
        linked = await self._store.attach_artifact(artifact)

        logger.info(
            "evidence_artifact_created",
            evidence_id=evidence.id,
            artifact_id=linked.artifact_id,
            chars=len(text),
        )
        return linked

    async def text_for(self, evidence: Evidence) -> str:
        """Extractable text of an evidence record."""
        if evidence.artifact_id is not None:
            artifact = await self._store.get_artifact(evidence.artifact_id)
            if artifact is not None:
                return artifact.text

        if evidence.content_type == "pdf":
            return pdf_to_text(decode_pdf(evidence.raw_content))
        if evidence.content_type == "html":
            return html_to_text(evidence.raw_content)
        return evidence.raw_content

    async def get_extractable_text(self, evidence_id: str) -> str:
        """
        Extractable text of the evidence with the given id.

        Raises:
            EvidenceNotFoundError: If no such evidence exists
        """
        evidence = await self._store.get_evidence(evidence_id)
        if evidence is None:
            raise EvidenceNotFoundError(evidence_id)
        return await self.text_for(evidence)
