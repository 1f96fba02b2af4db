"""
Paginated table layout for stock reports.

The layout pass turns rows into draw instructions (rects, text, lines,
images, page breaks) measured in points from the top-left corner of the
page. PdfCanvasSink replays them onto a reportlab canvas, flipping the
y axis. Keeping the two apart lets the page-break rules be checked without
opening a PDF.
"""
from __future__ import annotations

import logging
import math
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from io import BytesIO
from typing import Callable, Iterator, List, Optional, Sequence, Union

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

BODY_FONT = "Helvetica"
BODY_SIZE = 9
HEADER_FONT = "Helvetica-Bold"
HEADER_SIZE = 10
TITLE_FONT = "Helvetica-Bold"
TITLE_SIZE = 16
SUBTITLE_SIZE = 10
SUBTITLE_LEADING = 15
FOOTER_SIZE = 9

TEXT_COLOR = "#000000"
HEADER_FILL = "#dddddd"
ROW_SHADES = ("#ffffff", "#f8f8f8")
BORDER_COLOR = "#cccccc"

LOGO_SIZE = 40
FOOTER_RULE_GAP = 10
FOOTER_LINE_STEP = 20
FOOTER_COLUMN_STEP = 220
FOOTER_PER_LINE = 3

SERIAL_FIELD = "sn"
MISSING_TEXT = "N/A"
ELLIPSIS = "…"


# ---------- errors ----------

class ReportInputError(ValueError):
    """Rows, columns or geometry are missing or unusable."""


class RowFormatError(ValueError):
    """A single row cannot be turned into cell text."""


class ReportStreamError(OSError):
    """The output sink refused the finished document."""


class RenderCancelled(Exception):
    """The consumer went away; rendering stopped early."""


# ---------- declarative inputs ----------

@dataclass(frozen=True)
class ReportColumn:
    field: str
    label: str
    width: float
    numeric: bool = False
    wrap: bool = False

    def __post_init__(self):
        if not self.field:
            raise ReportInputError("column field is required")
        if not self.width or self.width <= 0:
            raise ReportInputError(f"column {self.field!r} needs a positive width")


@dataclass(frozen=True)
class PageGeometry:
    """All dimensions in points. Every field is required; a4_landscape() is the usual page."""

    page_width: float
    page_height: float
    margin_top: float
    margin_left: float
    bottom_reserve: float      # footer area below the printable height
    min_row_height: float
    line_height: float
    header_height: float
    header_gap: float          # space between the header bar and the first row
    title_height: float        # title/logo block, first page only
    cell_padding: float

    def __post_init__(self):
        if self.page_width <= 0 or self.page_height <= 0:
            raise ReportInputError("page size must be positive")
        if self.min_row_height <= 0 or self.line_height <= 0:
            raise ReportInputError("row and line heights must be positive")
        if min(self.margin_top, self.margin_left, self.bottom_reserve,
               self.header_height, self.header_gap, self.title_height, self.cell_padding) < 0:
            raise ReportInputError("margins, gaps and paddings cannot be negative")
        if self.body_capacity < max(self.min_row_height, self.line_height):
            raise ReportInputError("page geometry leaves no room for a single row")

    @property
    def printable_height(self) -> float:
        return self.page_height - self.bottom_reserve

    @property
    def body_capacity(self) -> float:
        """Height available to rows on a continuation page."""
        return self.printable_height - self.margin_top - self.header_height - self.header_gap

    @classmethod
    def a4_landscape(cls) -> "PageGeometry":
        w, h = landscape(A4)
        return cls(
            page_width=w, page_height=h,
            margin_top=30, margin_left=30, bottom_reserve=100,
            min_row_height=15, line_height=12,
            header_height=20, header_gap=5, title_height=50,
            cell_padding=5,
        )


# ---------- draw instructions ----------

@dataclass(frozen=True)
class NewPage:
    page: int


@dataclass(frozen=True)
class DrawRect:
    page: int
    x: float
    y: float
    width: float
    height: float
    fill: str
    kind: str                        # "header" | "band"
    row_index: Optional[int] = None
    stroke: Optional[str] = None


@dataclass(frozen=True)
class DrawText:
    page: int
    x: float                         # anchor: left edge, centre or right edge per align
    y: float                         # baseline
    text: str
    font: str
    size: float
    align: str = "left"


@dataclass(frozen=True)
class DrawLine:
    page: int
    x1: float
    y1: float
    x2: float
    y2: float
    color: str


@dataclass(frozen=True)
class DrawImage:
    page: int
    path: str
    x: float
    y: float
    width: float
    height: float


Instruction = Union[NewPage, DrawRect, DrawText, DrawLine, DrawImage]


class RenderState(str, Enum):
    AWAITING_HEADER = "awaiting_header"
    RENDERING_HEADER = "rendering_header"
    RENDERING_ROWS = "rendering_rows"
    PAGE_BREAK = "page_break"
    FINISHED = "finished"


@dataclass
class PageCursor:
    offset: float
    page: int
    top: float
    bottom: float

    def fits(self, height: float) -> bool:
        return self.offset + height <= self.bottom

    def advance(self, height: float):
        self.offset += height

    def new_page(self):
        self.page += 1
        self.offset = self.top


@dataclass
class RenderStats:
    pages: int = 0
    rows_drawn: int = 0
    rows_skipped: int = 0


@dataclass
class PreparedRow:
    index: int                       # position in the caller's row sequence
    cells: List[List[str]]
    height: float


# ---------- text helpers ----------

Measure = Callable[[str], float]


def body_text_width(text: str) -> float:
    return stringWidth(text, BODY_FONT, BODY_SIZE)


def _one_line(s: str) -> str:
    return (s or "").replace("\r", " ").replace("\n", " ").strip()


def _split_long_word(word: str, max_width: float, measure: Measure) -> List[str]:
    if measure(word) < max_width:
        return [word]
    chunks, cur = [], ""
    for ch in word:
        if cur and measure(cur + ch) >= max_width:
            chunks.append(cur)
            cur = ch
        else:
            cur += ch
    if cur:
        chunks.append(cur)
    return chunks


def wrap_text(text: str, max_width: float, measure: Measure = body_text_width) -> List[str]:
    """
    Greedy word wrap:
      - words join the current line while it measures under max_width;
      - the word that would reach max_width opens the next line;
      - a word wider than the column on its own is split by characters.
    Always returns at least one line ('' for empty text).
    """
    words = str(text or "").split()
    if not words:
        return [""]

    lines: List[str] = []
    line = ""
    for word in words:
        for piece in _split_long_word(word, max_width, measure):
            if not line:
                line = piece
                continue
            candidate = f"{line} {piece}"
            if measure(candidate) < max_width:
                line = candidate
            else:
                lines.append(line)
                line = piece
    lines.append(line)
    return lines


def ellipsize(text: str, max_width: float, measure: Measure = body_text_width) -> str:
    text = text or ""
    if measure(text) <= max_width:
        return text
    max_w = max_width - measure(ELLIPSIS)
    if max_w <= 0:
        return ELLIPSIS
    out = ""
    for ch in text:
        if measure(out + ch) > max_w:
            break
        out += ch
    return out + ELLIPSIS


def _format_number(v) -> str:
    if isinstance(v, float) and (math.isnan(v) or math.isinf(v)):
        return MISSING_TEXT
    if isinstance(v, int):
        return str(v)
    f = float(v)
    if f.is_integer():
        return str(int(f))
    return f"{f:.2f}".rstrip("0").rstrip(".")


def format_cell(value) -> str:
    """Cell text for a row value; RowFormatError for values a cell cannot show."""
    if value is None:
        return MISSING_TEXT
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip() or MISSING_TEXT
    raise RowFormatError(f"unsupported cell value of type {type(value).__name__}")


# ---------- renderer ----------

class PaginatedTableRenderer:
    """
    Lays rows out on fixed-size pages.

    State machine (one PageCursor per pass, one deferred row of lookahead):
      AWAITING_HEADER -> RENDERING_HEADER -> RENDERING_ROWS
      RENDERING_ROWS -> PAGE_BREAK -> AWAITING_HEADER   (row did not fit)
      RENDERING_ROWS -> FINISHED                        (rows exhausted)

    Title/logo are drawn above the first header only; later pages repeat
    the column bar. The signature footer goes on the last page.
    """

    def __init__(
        self,
        columns: Sequence[ReportColumn],
        geometry: PageGeometry,
        *,
        title: str | None = None,
        subtitle_lines: Sequence[str] = (),
        logo_path: str | None = None,
        footer_labels: Sequence[str] = (),
        measure: Measure | None = None,
    ):
        if columns is None or isinstance(columns, (str, bytes, Mapping)) or not isinstance(columns, Iterable):
            raise ReportInputError("columns must be a list of ReportColumn")
        columns = list(columns)
        if not columns:
            raise ReportInputError("at least one column is required")
        for col in columns:
            if not isinstance(col, ReportColumn):
                raise ReportInputError(f"unexpected column definition {col!r}")
        if not isinstance(geometry, PageGeometry):
            raise ReportInputError("page geometry is required")

        self.columns = tuple(columns)
        self.geometry = geometry
        self.title = title
        self.subtitle_lines = tuple(subtitle_lines or ())
        self.logo_path = logo_path
        self.footer_labels = tuple(footer_labels or ())
        self.measure = measure or body_text_width

        xs, x = [], geometry.margin_left
        for col in self.columns:
            xs.append(x)
            x += col.width
        self._xs = tuple(xs)
        self.table_width = x - geometry.margin_left
        self._max_lines = max(1, int(geometry.body_capacity // geometry.line_height))

        # signature labels reflow to the page width and must fit the bottom reserve
        room = geometry.page_width - 2 * geometry.margin_left
        self._footer_per_line = max(1, min(FOOTER_PER_LINE, int(room // FOOTER_COLUMN_STEP)))
        if self.footer_labels and self.footer_height > geometry.bottom_reserve:
            raise ReportInputError(
                f"footer needs {self.footer_height:g}pt below the table, "
                f"bottom reserve is {geometry.bottom_reserve:g}pt"
            )

    @property
    def footer_height(self) -> float:
        if not self.footer_labels:
            return 0.0
        lines = math.ceil(len(self.footer_labels) / self._footer_per_line)
        return 2 * FOOTER_RULE_GAP + (lines - 1) * FOOTER_LINE_STEP + FOOTER_SIZE

    # ---------- public ----------

    def layout(self, rows, stats: RenderStats | None = None) -> Iterator[Instruction]:
        """Validate rows up front, then return the instruction generator."""
        if rows is None or isinstance(rows, (str, bytes, Mapping)) or not isinstance(rows, Iterable):
            raise ReportInputError("rows must be a list of records")
        return self._layout(iter(rows), stats if stats is not None else RenderStats())

    def render(self, rows, stream, cancelled: Callable[[], bool] | None = None) -> RenderStats:
        """
        Render into a writable binary stream. The stream is written once,
        when the document is complete; on cancel nothing is written.
        """
        stats = RenderStats()
        instructions = self.layout(rows, stats)
        sink = PdfCanvasSink(stream, self.geometry, title=self.title)
        try:
            for ins in instructions:
                if cancelled is not None and cancelled():
                    raise RenderCancelled(
                        f"rendering stopped on page {stats.pages or 1} after {stats.rows_drawn} rows"
                    )
                sink.apply(ins)
        finally:
            instructions.close()

        try:
            sink.finish()
        except (OSError, ValueError) as exc:
            raise ReportStreamError(f"could not write report: {exc}") from exc
        return stats

    # ---------- state machine ----------

    def _layout(self, source, stats: RenderStats) -> Iterator[Instruction]:
        g = self.geometry
        cursor = PageCursor(offset=g.margin_top, page=1, top=g.margin_top, bottom=g.printable_height)
        enumerated = enumerate(source)
        state = RenderState.AWAITING_HEADER
        pending: PreparedRow | None = None

        while state is not RenderState.FINISHED:
            if state is RenderState.AWAITING_HEADER:
                if cursor.page == 1:
                    yield from self._title_block(cursor)
                state = RenderState.RENDERING_HEADER

            elif state is RenderState.RENDERING_HEADER:
                yield from self._header_bar(cursor)
                state = RenderState.RENDERING_ROWS

            elif state is RenderState.RENDERING_ROWS:
                if pending is None:
                    pending = self._next_prepared(enumerated, stats)
                    if pending is None:
                        state = RenderState.FINISHED
                        continue
                if not cursor.fits(pending.height):
                    state = RenderState.PAGE_BREAK
                    continue
                yield from self._draw_row(cursor, pending)
                stats.rows_drawn += 1
                pending = None

            elif state is RenderState.PAGE_BREAK:
                cursor.new_page()
                yield NewPage(cursor.page)
                state = RenderState.AWAITING_HEADER

        yield from self._footer(cursor)
        stats.pages = cursor.page
        logger.info(
            "Laid out %s rows on %s page(s), %s skipped",
            stats.rows_drawn, stats.pages, stats.rows_skipped,
        )

    def _next_prepared(self, enumerated, stats: RenderStats) -> PreparedRow | None:
        for index, row in enumerated:
            try:
                return self.prepare_row(index, row)
            except Exception as exc:
                stats.rows_skipped += 1
                logger.warning("Skipping report row #%s: %s", index + 1, exc)
        return None

    # ---------- measuring ----------

    def prepare_row(self, index: int, row) -> PreparedRow:
        """Cell text per column, wrapped, plus the row height."""
        g = self.geometry
        if hasattr(row, "as_report_row"):
            row = row.as_report_row()
        if not isinstance(row, Mapping):
            raise RowFormatError(f"row is {type(row).__name__}, expected a mapping")

        cells: List[List[str]] = []
        tallest = 0
        for col in self.columns:
            if col.field == SERIAL_FIELD:
                text = str(index + 1)
            else:
                text = format_cell(row.get(col.field))
            usable = max(1.0, col.width - 2 * g.cell_padding)

            if col.wrap:
                lines = wrap_text(text, usable, self.measure)
                if len(lines) > self._max_lines:
                    logger.warning(
                        "Row #%s column %s: %s lines exceed a page, keeping %s",
                        index + 1, col.field, len(lines), self._max_lines,
                    )
                    lines = lines[: self._max_lines]
                tallest = max(tallest, len(lines))
            else:
                lines = [ellipsize(_one_line(text), usable, self.measure)]
            cells.append(lines)

        height = max(g.min_row_height, tallest * g.line_height)
        return PreparedRow(index=index, cells=cells, height=height)

    # ---------- drawing ----------

    def _cell_text(self, page, col: ReportColumn, x: float, baseline: float, text: str, font: str, size: float):
        if col.numeric:
            return DrawText(page, x + col.width / 2, baseline, text, font, size, "center")
        return DrawText(page, x + self.geometry.cell_padding, baseline, text, font, size, "left")

    def _title_block(self, cursor: PageCursor) -> Iterator[Instruction]:
        g = self.geometry
        top = cursor.offset
        text_x = g.margin_left

        if self.logo_path and os.path.exists(self.logo_path):
            yield DrawImage(cursor.page, self.logo_path, g.margin_left, max(0.0, top - 10), LOGO_SIZE, LOGO_SIZE)
            text_x += LOGO_SIZE + 10

        if self.title:
            yield DrawText(cursor.page, text_x, top + TITLE_SIZE - 5, self.title, TITLE_FONT, TITLE_SIZE)
            baseline = top + TITLE_SIZE - 5 + SUBTITLE_LEADING + 4
        else:
            baseline = top + SUBTITLE_SIZE
        for line in self.subtitle_lines:
            if baseline > top + g.title_height:
                break
            yield DrawText(cursor.page, text_x, baseline, line, BODY_FONT, SUBTITLE_SIZE)
            baseline += SUBTITLE_LEADING

        cursor.advance(g.title_height)

    def _header_bar(self, cursor: PageCursor) -> Iterator[Instruction]:
        g = self.geometry
        top = cursor.offset
        yield DrawRect(cursor.page, g.margin_left, top, self.table_width, g.header_height, HEADER_FILL, "header")
        baseline = top + g.header_height / 2 + HEADER_SIZE * 0.35
        for col, x in zip(self.columns, self._xs):
            yield self._cell_text(cursor.page, col, x, baseline, col.label, HEADER_FONT, HEADER_SIZE)
        cursor.advance(g.header_height + g.header_gap)

    def _draw_row(self, cursor: PageCursor, row: PreparedRow) -> Iterator[Instruction]:
        g = self.geometry
        top = cursor.offset
        yield DrawRect(
            cursor.page, g.margin_left, top, self.table_width, row.height,
            ROW_SHADES[row.index % 2], "band", row_index=row.index, stroke=BORDER_COLOR,
        )
        for col, x, lines in zip(self.columns, self._xs, row.cells):
            for i, line in enumerate(lines):
                if not line:
                    continue
                baseline = top + i * g.line_height + g.line_height * 0.75
                yield self._cell_text(cursor.page, col, x, baseline, line, BODY_FONT, BODY_SIZE)
        cursor.advance(row.height)

    def _footer(self, cursor: PageCursor) -> Iterator[Instruction]:
        if not self.footer_labels:
            return
        g = self.geometry
        rule_y = cursor.bottom + FOOTER_RULE_GAP
        per_line = self._footer_per_line
        label_width = min(FOOTER_COLUMN_STEP, g.page_width - 2 * g.margin_left) - FOOTER_RULE_GAP
        yield DrawLine(cursor.page, g.margin_left, rule_y, g.margin_left + self.table_width, rule_y, BORDER_COLOR)
        for i, label in enumerate(self.footer_labels):
            x = g.margin_left + (i % per_line) * FOOTER_COLUMN_STEP
            baseline = rule_y + FOOTER_RULE_GAP + (i // per_line) * FOOTER_LINE_STEP + FOOTER_SIZE
            yield DrawText(cursor.page, x, baseline, ellipsize(label, label_width, self.measure), BODY_FONT, FOOTER_SIZE)


# ---------- PDF sink ----------

class PdfCanvasSink:
    """Replays draw instructions onto a reportlab canvas."""

    def __init__(self, stream, geometry: PageGeometry, title: str | None = None):
        self._h = geometry.page_height
        self._c = canvas.Canvas(stream, pagesize=(geometry.page_width, geometry.page_height))
        if title:
            self._c.setTitle(title)

    def apply(self, ins: Instruction):
        c = self._c
        if isinstance(ins, NewPage):
            c.showPage()
        elif isinstance(ins, DrawRect):
            c.setFillColor(colors.HexColor(ins.fill))
            if ins.stroke:
                c.setStrokeColor(colors.HexColor(ins.stroke))
                c.setLineWidth(0.5)
            c.rect(ins.x, self._h - ins.y - ins.height, ins.width, ins.height,
                   fill=1, stroke=1 if ins.stroke else 0)
        elif isinstance(ins, DrawText):
            c.setFillColor(colors.HexColor(TEXT_COLOR))
            c.setFont(ins.font, ins.size)
            y = self._h - ins.y
            if ins.align == "center":
                c.drawCentredString(ins.x, y, ins.text)
            elif ins.align == "right":
                c.drawRightString(ins.x, y, ins.text)
            else:
                c.drawString(ins.x, y, ins.text)
        elif isinstance(ins, DrawLine):
            c.setStrokeColor(colors.HexColor(ins.color))
            c.setLineWidth(0.75)
            c.line(ins.x1, self._h - ins.y1, ins.x2, self._h - ins.y2)
        elif isinstance(ins, DrawImage):
            try:
                c.drawImage(
                    ins.path, ins.x, self._h - ins.y - ins.height,
                    width=ins.width, height=ins.height,
                    preserveAspectRatio=True, mask="auto",
                )
            except Exception as exc:
                logger.info("Logo %s not drawn: %s", ins.path, exc)
        else:
            raise TypeError(f"unknown draw instruction {ins!r}")

    def finish(self):
        self._c.showPage()
        self._c.save()


def render_table_pdf(
    rows,
    columns: Sequence[ReportColumn],
    geometry: PageGeometry,
    *,
    title: str | None = None,
    subtitle_lines: Sequence[str] = (),
    logo_path: str | None = None,
    footer_labels: Sequence[str] = (),
    measure: Measure | None = None,
    cancelled: Callable[[], bool] | None = None,
) -> bytes:
    renderer = PaginatedTableRenderer(
        columns, geometry,
        title=title, subtitle_lines=subtitle_lines, logo_path=logo_path,
        footer_labels=footer_labels, measure=measure,
    )
    with BytesIO() as buf:
        renderer.render(rows, buf, cancelled=cancelled)
        return buf.getvalue()
