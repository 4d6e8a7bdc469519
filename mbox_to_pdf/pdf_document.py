"""
Paginated PDF rendering of a single mail message.

A PdfDocument is filled in a fixed order: mail headers, optionally an
attachment listing, the body lines, optionally an attachment listing, and
finally close(). Text is wrapped to the printable width and flows over as
many pages as needed. Every page gets a header and a footer consisting of
up to three boxed texts (left, center, right), each given as a template;
those texts are only rendered in close(), once the number of pages is
known, so that templates like '(@p/@P)' come out right.

Drawing goes through a ReportLabSurface, which records the pages and
writes them with reportlab when the document is saved.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from reportlab.lib import pagesizes
from reportlab.lib.units import cm, inch, mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from .format import FormatError, FormatProgram, PageContext, compile_format

logger = logging.getLogger(__name__)

# Smallest margin any printer can handle
MIN_MARGIN = 24

DEFAULT_MARGINS = {'left': 36, 'right': 30, 'top': 30, 'bottom': 30}
DEFAULT_BOX_MARGINS = {'left': 6, 'right': 6, 'top': 3, 'bottom': 6}
HEAD_SKIP = 16
FOOT_SKIP = 16
BOX_LINE_WIDTH = 2
# Minimal distance between boxes of the same header or footer
BOX_SEPARATION = 10

DEFAULT_HEAD_RIGHT = '(@p)'

HEADER_FOOTER_SLOTS = ('head_left', 'head_center', 'head_right',
                       'foot_left', 'foot_center', 'foot_right')

Measure = Callable[[str], float]


class LayoutError(ValueError):
    """Raised when the page layout cannot hold the requested content."""


class SequenceError(RuntimeError):
    """Raised when document methods are called out of order."""


class Stage(IntEnum):
    START = 0
    HEADERS = 1
    ATTACHMENTS_PRE = 2
    BODY = 3
    ATTACHMENTS_POST = 4
    CLOSED = 5


@dataclass(frozen=True)
class FontSpec:
    """A font with its size and line distance, in points."""
    name: str
    size: float
    lead: float


DEFAULT_FONTS = {
    'headfoot': FontSpec('Helvetica', 14, 16.8),
    'header': FontSpec('Courier', 12, 14.4),
    'headername': FontSpec('Courier-Bold', 12, 14.4),
    'body': FontSpec('Courier', 10, 12),
}


#
# Paper sizes
#

_UNITS = {'': 1, 'pt': 1, 'in': inch, 'mm': mm, 'cm': cm}

_PAPER_SIZE_RE = re.compile(r'''
    ^\s*(?P<w>[0-9]+(?:\.[0-9]*)?)\s*(?P<wu>in|pt|mm|cm)?
    \s*[,x]\s*
    (?P<h>[0-9]+(?:\.[0-9]*)?)\s*(?P<hu>in|pt|mm|cm)?\s*$
''', re.X | re.I)


def parse_paper_size(size) -> Optional[Tuple[float, float]]:
    """
    Convert a paper size specification to (width, height) in points.

    Accepted are reportlab page size names in any case ('A4', 'letter'),
    'A4L' for landscape A4, a (width, height) pair in points, and strings
    like '210mmx297mm' or '595,842'.

    Returns:
        The size, or None when the specification is not recognized
    """
    if isinstance(size, (tuple, list)):
        if len(size) == 2 and all(isinstance(v, (int, float)) and v > 0 for v in size):
            return (float(size[0]), float(size[1]))
        return None
    if not isinstance(size, str):
        return None
    name = size.strip().upper()
    named = getattr(pagesizes, name, None)
    if isinstance(named, tuple) and len(named) == 2:
        return (float(named[0]), float(named[1]))
    if name == 'A4L':
        return pagesizes.landscape(pagesizes.A4)
    match = _PAPER_SIZE_RE.match(size)
    if match:
        width = float(match.group('w')) * _UNITS[(match.group('wu') or '').lower()]
        height = float(match.group('h')) * _UNITS[(match.group('hu') or '').lower()]
        if width > 0 and height > 0:
            return (width, height)
    return None


def check_paper_size(size) -> bool:
    return parse_paper_size(size) is not None


#
# Line wrapping
#

_QUOTE_PREFIX_RE = re.compile(r'^((?:[>}|]\s*)+)(.*)$', re.S)
_INDENT_PREFIX_RE = re.compile(r'^(\s+)(.*)$', re.S)
_FIRST_WORD_RE = re.compile(r'^\s*(\S+)(.*)$', re.S)
_NEXT_WORD_RE = re.compile(r'^(\s*\S+)(.*)$', re.S)


class WrappedLine(NamedTuple):
    """One output line: prefix drawn at the margin, or a blank indent, then text."""
    prefix: str
    indent: float
    text: str


def split_prefix(line: str) -> Tuple[str, str, bool]:
    """
    Separate a body line into its quote or indent prefix and the text.

    A line starting with '>From ' is first unescaped to 'From '.

    Returns:
        Tuple (prefix, text, is_quote)
    """
    if line.startswith('>From '):
        line = line[1:]
    match = _QUOTE_PREFIX_RE.match(line)
    if match:
        return match.group(1), match.group(2), True
    match = _INDENT_PREFIX_RE.match(line)
    if match:
        return match.group(1), match.group(2), False
    return '', line, False


def break_word(word: str, width: float, measure: Measure) -> Tuple[str, str]:
    """
    Split a word at the longest prefix that fits in width.

    The break point is first estimated from the ratio of width to the
    measured word width, then moved one character at a time. At least one
    character is always taken, even if it does not fit.

    Returns:
        Tuple (fitting part, remainder)
    """
    total = measure(word)
    if total <= width:
        return word, ''
    count = int(len(word) * width / total) if total > 0 else len(word)
    count = max(1, min(count, len(word)))
    if measure(word[:count]) > width:
        while count > 1 and measure(word[:count]) > width:
            count -= 1
    else:
        while count < len(word) and measure(word[:count + 1]) <= width:
            count += 1
    return word[:count], word[count:]


def wrap_text(text: str, width: float, measure: Measure, prefix: str = '',
              repeat_prefix: bool = False) -> List[WrappedLine]:
    """
    Wrap text into lines no wider than width.

    Args:
        text: The text, without its prefix
        width: Available width including the prefix
        measure: Width of a string in the current font
        prefix: Quote or indent prefix, printed on the first line
        repeat_prefix: Print the prefix on continuation lines too; otherwise
                       continuation lines are indented by its width

    Returns:
        The lines; always at least one
    """
    prefix_width = measure(prefix) if prefix else 0.0
    text_width = width - prefix_width
    if not text.strip():
        return [WrappedLine(prefix, 0.0, '')]

    lines = []
    rest = text
    first = True
    while rest.strip():
        if not prefix or first or repeat_prefix:
            line_prefix, indent = prefix, 0.0
        else:
            line_prefix, indent = '', prefix_width
        first = False

        word, rest = _FIRST_WORD_RE.match(rest).groups()
        word_width = measure(word)
        if word_width > text_width:
            head, tail = break_word(word, text_width, measure)
            pieces = [head]
            rest = tail + rest
        else:
            pieces = [word]
            remaining = text_width - word_width
            while True:
                match = _NEXT_WORD_RE.match(rest)
                if not match:
                    break
                word_width = measure(match.group(1))
                if word_width > remaining:
                    break
                pieces.append(match.group(1))
                remaining -= word_width
                rest = match.group(2)
        lines.append(WrappedLine(line_prefix, indent, ''.join(pieces)))
    return lines


#
# Drawing
#

def _encodable(text: str) -> str:
    # The standard PDF fonts only cover cp1252
    return text.encode('cp1252', 'replace').decode('cp1252')


class ReportLabSurface:
    """
    Page recorder that writes the pages with a reportlab canvas.

    Operations are buffered per page so that headers and footers can still
    be added to every page after the body text has been laid out.
    """

    def __init__(self, page_size: Tuple[float, float]):
        self.page_size = page_size
        self._pages: List[List[tuple]] = []

    @property
    def page_count(self) -> int:
        return len(self._pages)

    def create_page(self) -> int:
        self._pages.append([])
        return len(self._pages) - 1

    def set_font(self, page: int, font: FontSpec) -> None:
        self._pages[page].append(('font', font.name, font.size))

    def measure_width(self, text: str, font: FontSpec) -> float:
        return pdfmetrics.stringWidth(_encodable(text), font.name, font.size)

    def place_text(self, page: int, x: float, y: float, text: str, align: str = 'left') -> None:
        self._pages[page].append(('text', x, y, _encodable(text), align))

    def draw_rectangle(self, page: int, x: float, y: float, width: float, height: float,
                       line_width: float = BOX_LINE_WIDTH) -> None:
        self._pages[page].append(('rect', x, y, width, height, line_width))

    def page_texts(self, page: int) -> List[str]:
        """Texts placed on a page, in drawing order."""
        return [op[3] for op in self._pages[page] if op[0] == 'text']

    def page_rectangles(self, page: int) -> List[Tuple[float, float, float, float]]:
        return [op[1:5] for op in self._pages[page] if op[0] == 'rect']

    def save_file(self, path: str) -> None:
        pdf = canvas.Canvas(path, pagesize=self.page_size)
        for ops in self._pages:
            for op in ops:
                if op[0] == 'font':
                    pdf.setFont(op[1], op[2])
                elif op[0] == 'text':
                    _kind, x, y, text, align = op
                    if align == 'center':
                        pdf.drawCentredString(x, y, text)
                    elif align == 'right':
                        pdf.drawRightString(x, y, text)
                    else:
                        pdf.drawString(x, y, text)
                elif op[0] == 'rect':
                    _kind, x, y, width, height, line_width = op
                    pdf.setLineWidth(line_width)
                    pdf.rect(x, y, width, height, stroke=1, fill=0)
            pdf.showPage()
        pdf.save()


#
# Layout
#

@dataclass
class Layout:
    """Page geometry, in points from the lower left corner of the paper."""
    page_size: Tuple[float, float]
    art_left: float
    art_bottom: float
    art_right: float
    art_top: float
    body_top_y: float
    body_bottom_y: float
    box_margin_lr: float
    box_height: float
    hf_left_text_x: float
    hf_center_text_x: float
    hf_right_text_x: float
    head_text_y: float
    foot_text_y: float
    head_box_y: float
    foot_box_y: float
    has_head: bool = False
    has_foot: bool = False

    @property
    def page_width(self) -> float:
        return self.art_right - self.art_left

    @classmethod
    def compute(cls, page_size: Tuple[float, float], texts: Dict[str, str],
                measure: Measure, headfoot_size: float, body_size: float,
                margins: Optional[Dict[str, float]] = None,
                box_margins: Optional[Dict[str, float]] = None) -> 'Layout':
        """
        Compute the geometry and check that headers, footers and body fit.

        Args:
            page_size: Paper (width, height)
            texts: Estimated header/footer texts per slot (missing = no box)
            measure: Width of a string in the header/footer font
            headfoot_size: Header/footer font size
            body_size: Body font size
            margins: Paper margins, see DEFAULT_MARGINS
            box_margins: Space around header/footer texts inside their boxes

        Raises:
            LayoutError: if boxes collide or no body line fits
        """
        margins = {**DEFAULT_MARGINS, **(margins or {})}
        box_margins = {**DEFAULT_BOX_MARGINS, **(box_margins or {})}
        for side, value in margins.items():
            if value < MIN_MARGIN:
                raise LayoutError(f"{side} margin {value} is smaller than {MIN_MARGIN}")

        width, height = page_size
        art_left = margins['left']
        art_bottom = margins['bottom']
        art_right = width - margins['right']
        art_top = height - margins['top']
        page_width = art_right - art_left

        box_margin_lr = box_margins['left'] + box_margins['right']
        box_height = box_margins['top'] + box_margins['bottom'] + headfoot_size

        box_widths = {}
        for slot in HEADER_FOOTER_SLOTS:
            text = texts.get(slot)
            box_widths[slot] = measure(text) + box_margin_lr if text is not None else 0.0
        has_head = any(texts.get(s) is not None for s in HEADER_FOOTER_SLOTS[:3])
        has_foot = any(texts.get(s) is not None for s in HEADER_FOOTER_SLOTS[3:])

        for part in ('head', 'foot'):
            center = box_widths[f'{part}_center']
            for side in ('left', 'right'):
                if 2 * box_widths[f'{part}_{side}'] + center + 2 * BOX_SEPARATION > page_width:
                    raise LayoutError(
                        f"{part}er fields {side} and center collide: "
                        f"#{texts.get(f'{part}_{side}', '')}# and #{texts.get(f'{part}_center', '')}#"
                    )

        head_height = box_height if has_head else 0
        foot_height = box_height if has_foot else 0
        body_top_y = art_top - head_height - (HEAD_SKIP if has_head else 0) - body_size
        body_bottom_y = art_bottom + foot_height + (FOOT_SKIP if has_foot else 0)
        if body_bottom_y > body_top_y:
            raise LayoutError("no room for body text")

        return cls(
            page_size=(width, height),
            art_left=art_left,
            art_bottom=art_bottom,
            art_right=art_right,
            art_top=art_top,
            body_top_y=body_top_y,
            body_bottom_y=body_bottom_y,
            box_margin_lr=box_margin_lr,
            box_height=box_height,
            hf_left_text_x=art_left + box_margins['left'],
            hf_center_text_x=(art_left + art_right) / 2
                + (box_margins['left'] - box_margins['right']) / 2,
            hf_right_text_x=art_right - box_margins['right'],
            head_text_y=art_top - box_margins['top'] - headfoot_size,
            foot_text_y=art_bottom + box_margins['bottom'],
            head_box_y=art_top - box_height,
            foot_box_y=art_bottom,
            has_head=has_head,
            has_foot=has_foot,
        )


@dataclass(frozen=True)
class DeferredHeaderFooter:
    """A header or footer text waiting for its page numbers."""
    page: int
    slot: str
    program: FormatProgram


class PdfDocument:
    """
    One message rendered to one PDF file.

    Example::

        doc = PdfDocument('out.pdf', context, head_left='%d %B %Y',
                          head_right='(@p/@P)')
        doc.print_header('From', 'Jane Doe <jane@example.com>')
        doc.print_header('Subject', 'Minutes')
        doc.print_lines(*body_lines)
        doc.close()
    """

    def __init__(self, filename: Union[str, FormatProgram], context=None,
                 paper_size='A4',
                 head_left=None, head_center=None, head_right=DEFAULT_HEAD_RIGHT,
                 foot_left=None, foot_center=None, foot_right=None,
                 margins: Optional[Dict[str, float]] = None,
                 fonts: Optional[Dict[str, FontSpec]] = None,
                 repeat_quotes: bool = False,
                 surface: Optional[ReportLabSurface] = None):
        """
        Args:
            filename: Output path, or a filename template without page codes
            context: MessageContext the header/footer templates are rendered for
            paper_size: See parse_paper_size
            head_left .. foot_right: Header/footer templates or programs; None
                                     for no box
            margins: Paper margins overriding DEFAULT_MARGINS
            fonts: Fonts overriding DEFAULT_FONTS, per role
            repeat_quotes: Repeat quote prefixes on wrapped continuation lines
            surface: Drawing surface; a ReportLabSurface by default

        Raises:
            FormatError: if a template is malformed or the filename template
                         has page codes
            LayoutError: if the paper size is unknown or the layout does not fit
            OSError: if the output file cannot be opened for writing
        """
        self.context = context
        self.repeat_quotes = repeat_quotes
        self.filename = self._resolve_filename(filename)

        page_size = parse_paper_size(paper_size)
        if page_size is None:
            raise LayoutError(f"Paper size {paper_size} not recognized")
        self.fonts = {**DEFAULT_FONTS, **(fonts or {})}

        self.programs: Dict[str, FormatProgram] = {}
        slots = dict(zip(HEADER_FOOTER_SLOTS, (head_left, head_center, head_right,
                                               foot_left, foot_center, foot_right)))
        for slot, value in slots.items():
            if value is None:
                continue
            self.programs[slot] = value if isinstance(value, FormatProgram) else compile_format(value)

        # Fail early when the file cannot be written
        with open(self.filename, 'wb'):
            pass

        self.surface = surface or ReportLabSurface(page_size)
        headfoot = self.fonts['headfoot']
        estimates = {slot: program.render(context) for slot, program in self.programs.items()}
        self.layout = Layout.compute(
            page_size, estimates,
            lambda text: self.surface.measure_width(text, headfoot),
            headfoot.size, self.fonts['body'].size, margins=margins,
        )

        self.stage = Stage.START
        self._attachments_printed = False
        self._deferred: List[DeferredHeaderFooter] = []
        self._page = -1
        self._page_pending = True
        self._y = self.layout.body_top_y

    def _resolve_filename(self, filename) -> str:
        if isinstance(filename, FormatProgram):
            if filename.has_page_number:
                raise FormatError(f"Filename template {filename.template} contains page numbers")
            filename = filename.render(self.context)
        if not filename.endswith('.pdf'):
            logger.warning(f"Appending .pdf to filename {filename}")
            filename += '.pdf'
        return filename

    @property
    def page_count(self) -> int:
        return self.surface.page_count

    #
    # Page and line administration
    #

    def _new_page(self) -> None:
        self._page = self.surface.create_page()
        for slot, program in self.programs.items():
            self._deferred.append(DeferredHeaderFooter(self._page, slot, program))
        self._y = self.layout.body_top_y
        self._page_pending = False

    def _current_page(self) -> int:
        if self._page_pending:
            self._new_page()
        return self._page

    def _advance(self, lead: float) -> None:
        # The next page is only created when something is drawn on it
        self._y -= lead
        if self._y < self.layout.body_bottom_y:
            self._page_pending = True

    def _blank_line(self) -> None:
        self._current_page()
        self._advance(self.fonts['header'].lead)

    def _draw_wrapped(self, x: float, lines: Sequence[WrappedLine], font: FontSpec) -> None:
        for line in lines:
            page = self._current_page()
            self.surface.set_font(page, font)
            if line.prefix or line.text:
                self.surface.place_text(page, x + line.indent, self._y, line.prefix + line.text)
            self._advance(font.lead)

    def _measure(self, font: FontSpec) -> Measure:
        return lambda text: self.surface.measure_width(text, font)

    def _print_header_or_attachments(self, name: str, values: Sequence[str]) -> None:
        values = [f"{value}," for value in values[:-1]] + [values[-1]]
        name_font = self.fonts['headername']
        value_font = self.fonts['header']
        page = self._current_page()
        label = f"{name}: "
        self.surface.set_font(page, name_font)
        self.surface.place_text(page, self.layout.art_left, self._y, label)
        x = self.layout.art_left + self.surface.measure_width(label, name_font)
        width = self.layout.art_right - x
        measure = self._measure(value_font)
        for value in values:
            self._draw_wrapped(x, wrap_text(value, width, measure), value_font)

    def _print_body_line(self, line: str) -> None:
        line = line.rstrip('\r\n')
        prefix, text, is_quote = split_prefix(line)
        font = self.fonts['body']
        lines = wrap_text(text, self.layout.page_width, self._measure(font), prefix,
                          repeat_prefix=is_quote and self.repeat_quotes)
        self._draw_wrapped(self.layout.art_left, lines, font)

    def _check_body_stage(self) -> None:
        if self.stage > Stage.BODY:
            raise SequenceError("print_line: called in wrong sequence")
        if self.stage < Stage.BODY:
            self._blank_line()
            self.stage = Stage.BODY

    #
    # Public interface
    #

    def print_header(self, name: str, *values: str) -> 'PdfDocument':
        """Print a mail header; several values are separated by commas."""
        if self.stage > Stage.HEADERS:
            raise SequenceError("print_header: called in wrong sequence")
        self.stage = Stage.HEADERS
        if values:
            self._print_header_or_attachments(name, values)
        return self

    def print_attachments(self, *names: str) -> 'PdfDocument':
        """
        Print the attachment listing, either right after the headers or
        after the body. Only the first call has any effect.
        """
        if self._attachments_printed:
            logger.warning("print_attachments: can only print them once, ignored")
            return self
        if self.stage == Stage.HEADERS:
            self.stage = Stage.ATTACHMENTS_PRE
        elif self.stage == Stage.BODY:
            self.stage = Stage.ATTACHMENTS_POST
        else:
            raise SequenceError("print_attachments: called in wrong sequence")
        self._attachments_printed = True
        if names:
            self._blank_line()
            self._print_header_or_attachments('Attachments', names)
        return self

    def print_line(self, line: str) -> 'PdfDocument':
        self._check_body_stage()
        self._print_body_line(line)
        return self

    def print_lines(self, *lines: str) -> 'PdfDocument':
        self._check_body_stage()
        for line in lines:
            self._print_body_line(line)
        return self

    def close(self) -> None:
        """Draw the headers and footers of all pages and write the file."""
        if self.stage == Stage.CLOSED:
            raise SequenceError("close: document already closed")
        if self.stage < Stage.BODY:
            logger.warning(f"File {self.filename} closed before writing body")
        if self.surface.page_count == 0:
            self._new_page()
        total = self.surface.page_count
        for token in self._deferred:
            text = token.program.render(self.context, PageContext(token.page + 1, total))
            self._draw_header_footer(token.page, token.slot, text)
        self.surface.save_file(self.filename)
        self.stage = Stage.CLOSED
        logger.debug(f"Wrote {total} pages to {self.filename}")

    def _draw_header_footer(self, page: int, slot: str, text: str) -> None:
        layout = self.layout
        font = self.fonts['headfoot']
        part, side = slot.split('_')
        y = layout.head_text_y if part == 'head' else layout.foot_text_y
        box_y = layout.head_box_y if part == 'head' else layout.foot_box_y
        box_width = self.surface.measure_width(text, font) + layout.box_margin_lr

        self.surface.set_font(page, font)
        if side == 'left':
            self.surface.place_text(page, layout.hf_left_text_x, y, text)
            box_x = layout.art_left
        elif side == 'center':
            self.surface.place_text(page, layout.hf_center_text_x, y, text, align='center')
            box_x = layout.hf_center_text_x - box_width / 2
        else:
            self.surface.place_text(page, layout.hf_right_text_x, y, text, align='right')
            box_x = layout.art_right - box_width
        self.surface.draw_rectangle(page, box_x, box_y, box_width, layout.box_height)
