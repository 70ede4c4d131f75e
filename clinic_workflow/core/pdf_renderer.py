"""
PDF Renderer - Structured SOAP document to printable clinical summary

Layout (A4, 50pt-equivalent margins):
- Header: title, template, generation date
- SOAP Note (Subjective, Objective, Assessment, Plan)
- Summary, Prescription, Follow-Up Instructions, Next Steps
- Footer on every page: page x of n, session id
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from clinic_workflow.contracts import RenderResult

logger = logging.getLogger(__name__)

TITLE_COLOR = (44, 62, 80)
SUBTITLE_COLOR = (52, 73, 94)
FOOTER_COLOR = (127, 140, 141)
SEPARATOR_COLOR = (189, 195, 199)

SOAP_SECTION_COLORS = (
    ("Subjective", (243, 156, 18)),
    ("Objective", (52, 152, 219)),
    ("Assessment", (155, 89, 182)),
    ("Plan", (39, 174, 96)),
)

# Core PDF fonts are latin-1 only
_REPLACEMENTS = {
    "•": "-",
    "⚠️": "!",
    "⚠": "!",
    "–": "-",
    "—": "-",
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "…": "...",
}


def to_latin1(text: Any) -> str:
    text = "" if text is None else str(text)
    for src, dst in _REPLACEMENTS.items():
        text = text.replace(src, dst)
    return text.encode("latin-1", errors="replace").decode("latin-1")


class _ClinicalSummaryPDF(FPDF):

    def __init__(self, session_id: str):
        super().__init__(orientation="P", unit="mm", format="A4")
        self.session_id = session_id
        self.set_margins(18, 18, 18)
        self.set_auto_page_break(auto=True, margin=20)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", size=8)
        self.set_text_color(*FOOTER_COLOR)
        self.cell(
            0, 10,
            to_latin1(f"Page {self.page_no()} of {{nb}} | Session: {self.session_id} | "
                      f"Generated: {datetime.now():%Y-%m-%d}"),
            align="C",
        )


class PDFRenderer:
    """Render SOAP documents to PDF files"""

    def __init__(self, output_dir: str = "outputs/pdfs"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"PDF Renderer initialized: {self.output_dir}")

    def render(self, soap_data: Dict[str, Any], template_type: Optional[str],
               session_id: str) -> RenderResult:
        """
        Render a document to a new file.

        Args:
            soap_data: Validated SOAP document
            template_type: Template key printed in the header
            session_id: Used in file name and footer

        Returns:
            RenderResult: Absolute path and file name
        """
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        file_name = f"clinical-summary-{session_id}-{timestamp}.pdf"
        file_path = self.output_dir / file_name

        logger.info(f"Generating PDF for {template_type}...")

        pdf = _ClinicalSummaryPDF(session_id)
        pdf.add_page()

        self._add_header(pdf, template_type)
        self._add_soap_section(pdf, soap_data.get("SOAP_Note") or {})
        self._add_section(pdf, "Summary", soap_data.get("summary"))
        self._add_section(pdf, "Prescription", soap_data.get("prescription"))
        self._add_section(pdf, "Follow-Up Instructions", soap_data.get("followUp"))
        self._add_section(pdf, "Next Steps", soap_data.get("nextSteps"), separator=False)

        pdf.output(str(file_path))

        logger.info(f"PDF generated: {file_name}")
        return RenderResult(pdf_path=str(file_path.absolute()), file_name=file_name)

    def _add_header(self, pdf: FPDF, template_type: Optional[str]) -> None:
        pdf.set_font("Helvetica", "B", 20)
        pdf.set_text_color(*TITLE_COLOR)
        pdf.cell(0, 10, "Clinical Summary Report", align="C",
                 new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        pdf.set_font("Helvetica", size=13)
        pdf.set_text_color(*SUBTITLE_COLOR)
        pdf.cell(0, 8, to_latin1(f"Template: {template_type or 'Unspecified'}"), align="C",
                 new_x=XPos.LMARGIN, new_y=YPos.NEXT)

        pdf.set_font("Helvetica", size=11)
        pdf.cell(0, 7, f"Generated: {datetime.now():%B %d, %Y %H:%M}", align="C",
                 new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self._add_separator(pdf)

    def _add_soap_section(self, pdf: FPDF, soap_note: Dict[str, Any]) -> None:
        self._add_title(pdf, "SOAP Note")
        for title, color in SOAP_SECTION_COLORS:
            pdf.set_font("Helvetica", "B", 12)
            pdf.set_text_color(*color)
            pdf.cell(0, 7, f"{title}:", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

            pdf.set_font("Helvetica", size=11)
            pdf.set_text_color(*TITLE_COLOR)
            pdf.multi_cell(0, 6, to_latin1(soap_note.get(title)),
                           new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            pdf.ln(2)
        self._add_separator(pdf)

    def _add_section(self, pdf: FPDF, title: str, content: Any, separator: bool = True) -> None:
        self._add_title(pdf, title)
        pdf.set_font("Helvetica", size=11)
        pdf.set_text_color(*SUBTITLE_COLOR)
        pdf.multi_cell(0, 6, to_latin1(content), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        if separator:
            self._add_separator(pdf)

    def _add_title(self, pdf: FPDF, title: str) -> None:
        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(*TITLE_COLOR)
        pdf.cell(0, 9, title, new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def _add_separator(self, pdf: FPDF) -> None:
        pdf.ln(2)
        pdf.set_draw_color(*SEPARATOR_COLOR)
        pdf.set_line_width(0.3)
        pdf.line(pdf.l_margin, pdf.get_y(), pdf.w - pdf.r_margin, pdf.get_y())
        pdf.ln(4)
