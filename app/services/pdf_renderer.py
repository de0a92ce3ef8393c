#app/services/pdf_renderer.py
from __future__ import annotations

import base64
import html
import logging
import re
from io import BytesIO
from typing import Any, Dict, List

from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, KeepTogether, Paragraph, SimpleDocTemplate, Spacer

logger = logging.getLogger(__name__)

SIGNATURE_SECTION_RE = re.compile(
    r'<div class="signature-section" data-role="(\w+)">(.*?)<div class="signature-name">(.*?)</div></div>',
    re.S,
)
BLOCK_RE = re.compile(r"<(h1|p|li|div)\b[^>]*>(.*?)</\1>", re.S)
IMG_SRC_RE = re.compile(r'<img src="([^"]*)"')

SIGNATURE_WIDTH = 60 * mm
SIGNATURE_MAX_HEIGHT = 25 * mm


def _inline(markup: str) -> str:
    # reportlab paragraphs understand <b>, not <strong>
    return markup.replace("<strong>", "<b>").replace("</strong>", "</b>")


def _signature_image(src: str):
    """
    Decode a data-URL signature into an Image flowable.
    Returns None when the payload is not a readable image.
    """
    _, _, payload = html.unescape(src).partition(",")
    try:
        raw = base64.b64decode(payload, validate=True)
        width, height = ImageReader(BytesIO(raw)).getSize()
    except (ValueError, OSError):
        return None
    if not width or not height:
        return None
    scale = min(SIGNATURE_WIDTH / width, SIGNATURE_MAX_HEIGHT / height)
    return Image(BytesIO(raw), width=width * scale, height=height * scale)


class ReportLabPdfRenderer:
    """
    Lays the contract document out as an A4 PDF.

    The template is the HTML produced by app.core.content: headings, labelled
    paragraphs, a numbered clause list and one section per signing role.
    Output is built with invariant=1 so the same content always yields the same bytes.
    """

    def __init__(self, pagesize=A4):
        self.pagesize = pagesize
        styles = getSampleStyleSheet()
        self.title_style = styles["Title"]
        self.body_style = styles["Normal"]
        self.note_style = ParagraphStyle("Note", parent=styles["Italic"], alignment=TA_CENTER)
        self.signature_style = ParagraphStyle("SignatureName", parent=styles["Normal"], alignment=TA_CENTER)

    def _body(self, markup: str) -> List[Any]:
        elements: List[Any] = []
        clause_no = 0
        for tag, content in BLOCK_RE.findall(markup):
            text = _inline(content.strip())
            if tag == "h1":
                elements.append(Paragraph(text, self.title_style))
            elif tag == "li":
                clause_no += 1
                elements.append(Paragraph(f"{clause_no}. {text}", self.body_style))
            else:
                elements.append(Paragraph(text, self.body_style))
            elements.append(Spacer(1, 2 * mm))
        return elements

    def _signature(self, role: str, slot: str, label: str) -> KeepTogether:
        parts: List[Any] = [Spacer(1, 8 * mm)]
        match = IMG_SRC_RE.search(slot)
        if match:
            image = _signature_image(match.group(1))
            if image is None:
                logger.warning("signature image unreadable; placeholder rendered", extra={"role": role})
                parts.append(Paragraph("[assinatura eletrônica registrada]", self.signature_style))
            else:
                parts.append(image)
        else:
            parts.append(Paragraph(html.escape(slot.strip()), self.signature_style))
        parts.append(Paragraph(label, self.signature_style))
        return KeepTogether(parts)

    def render(self, template: str, data: Dict[str, Any]) -> bytes:
        template = template or ""
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self.pagesize,
            leftMargin=20 * mm,
            rightMargin=20 * mm,
            topMargin=20 * mm,
            bottomMargin=20 * mm,
            title=data.get("contract_token") or "",
            invariant=1,
        )

        elements: List[Any] = []
        if data.get("stage") == "provisional":
            elements.append(Paragraph("MINUTA PROVISÓRIA PARA ASSINATURA", self.note_style))
            elements.append(Spacer(1, 4 * mm))

        first_signature = SIGNATURE_SECTION_RE.search(template)
        body = template[: first_signature.start()] if first_signature else template
        elements.extend(self._body(body))

        for role, slot, label in SIGNATURE_SECTION_RE.findall(template):
            elements.append(self._signature(role, slot, label))

        if not elements:
            elements.append(Paragraph(html.escape(data.get("contract_token") or ""), self.body_style))

        doc.build(elements)
        return buffer.getvalue()
