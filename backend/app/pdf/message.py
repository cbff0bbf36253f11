from __future__ import annotations

import textwrap
from io import BytesIO
from typing import Iterable, List

from pypdf import PdfWriter
from pypdf.generic import ContentStream, DictionaryObject, NameObject

TITLE = "Messaggio CWL"
PAGE_WIDTH = 612  # Letter, in points
PAGE_HEIGHT = 792
MARGIN = 72
TITLE_SIZE = 16
BODY_SIZE = 12
LEADING = 1.3
# Helvetica averages roughly half an em per glyph.
AVG_GLYPH_EM = 0.5


def _escape(text: str) -> bytes:
    """
    Escape a PDF string literal and encode it for the WinAnsi Helvetica font.

    Standard Type1 fonts carry no glyphs beyond cp1252, so characters outside
    it (Cyrillic, CJK, emoji) are replaced with ``?``.
    """
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    return escaped.encode("cp1252", errors="replace")


def _wrap_lines(message: str, width_chars: int) -> List[str]:
    lines: List[str] = []
    for raw in message.splitlines():
        raw = raw.rstrip()
        if not raw:
            lines.append("")
            continue
        lines.extend(textwrap.wrap(raw, width=width_chars, break_long_words=True) or [""])
    return lines


def _text_op(x: float, y: float, size: int, text: str) -> bytes:
    return b"BT /F1 %d Tf %.2f %.2f Td (%s) Tj ET\n" % (size, x, y, _escape(text))


def _paginate(lines: List[str], first_page_rows: int, page_rows: int) -> Iterable[List[str]]:
    chunk, limit = [], first_page_rows
    for line in lines:
        if len(chunk) >= limit:
            yield chunk
            chunk, limit = [], page_rows
        chunk.append(line)
    yield chunk


def _font_resources() -> DictionaryObject:
    helvetica = DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Font"),
            NameObject("/Subtype"): NameObject("/Type1"),
            NameObject("/BaseFont"): NameObject("/Helvetica"),
            NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
        }
    )
    return DictionaryObject({NameObject("/Font"): DictionaryObject({NameObject("/F1"): helvetica})})


def render_message_pdf(message: str, title: str = TITLE) -> bytes:
    """
    Lay out a title and the message body on Letter pages, single font.

    Only cp1252 text survives; other characters come out as ``?``.
    """
    usable_width = PAGE_WIDTH - 2 * MARGIN
    width_chars = int(usable_width / (BODY_SIZE * AVG_GLYPH_EM))
    body_step = BODY_SIZE * LEADING
    title_block = TITLE_SIZE * LEADING + body_step  # title plus one blank line
    rows_per_page = int((PAGE_HEIGHT - 2 * MARGIN) // body_step)
    first_page_rows = int((PAGE_HEIGHT - 2 * MARGIN - title_block) // body_step)

    writer = PdfWriter()
    lines = _wrap_lines(message, width_chars)
    for page_number, chunk in enumerate(_paginate(lines, first_page_rows, rows_per_page)):
        page = writer.add_blank_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        page[NameObject("/Resources")] = _font_resources()

        ops = bytearray()
        y = PAGE_HEIGHT - MARGIN - TITLE_SIZE
        if page_number == 0:
            title_width = len(title) * TITLE_SIZE * AVG_GLYPH_EM
            ops += _text_op((PAGE_WIDTH - title_width) / 2, y, TITLE_SIZE, title)
            y -= title_block
        for line in chunk:
            if line:
                ops += _text_op(MARGIN, y, BODY_SIZE, line)
            y -= body_step

        content = ContentStream(None, writer)
        content.set_data(bytes(ops))
        page.replace_contents(content)

    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()
