"""
Template mini-language for output filenames and page header/footer texts.

A template mixes literal text with two families of escape sequences:

- ``%`` escapes are strftime codes applied to the timestamp of the message,
  e.g. ``%Y-%m-%d``, ``%{month_name}`` or ``%3N``.
- ``@`` escapes select data from the message: addresses (``@f``, ``@t``),
  display names (``@F``, ``@T``), serial numbers within the folder
  (``@n``, ``@N``, ``@o``, ``@O``), page numbers (``@p``, ``@P``), the
  subject (``@j``), the message-id (``@m``) and named headers
  (``@{X-Mailer}``, also written ``@H{X-Mailer}``). ``@@`` is a literal ``@``.

Address and phrase codes accept modifiers before the selector letter, in a
fixed order:

    @[,{SEP}][u|h][RANGE](b|c|f|s|t)
    @[,{SEP}][_{REPL}]["][L|U][RANGE](B|C|F|S|T|D)
    @[_{C}][-][WIDTH|*](n|N|o|O|p|P)

``RANGE`` is a list of 1-based indices and ranges such as ``5-7,3``.
Number codes drop the padding of a WIDTH unless a fill character is
given, so ``@3n`` prints ``3`` and ``@_{0}3n`` prints ``003``.
``@D`` prints nothing, but makes its modifiers the defaults for the phrase
codes that follow it in the same template.

A template is compiled once into a FormatProgram, which is then rendered
for each message::

    program = compile_format('%Y-%m-%d_@3n_@F_mail')
    name = program.render(context)

Page number codes need a PageContext. Without one they render as 998 and
999, which gives an upper estimate of their width before the document has
been paginated.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

PAGE_NUMBER_SENTINEL = 998
PAGE_COUNT_SENTINEL = 999

STRFTIME_LETTERS = '%aAbBcCdDeFgGhHIjklmMnNpPrRsStTuUVwWxXyYzZ'


class FormatError(ValueError):
    """Raised when a template string cannot be compiled."""


class PageContext(NamedTuple):
    """Current page number and total number of pages of a document."""
    page_number: int
    page_count: int


@dataclass(frozen=True)
class Literal:
    """Literal text of a template."""
    text: str


@dataclass(frozen=True)
class Code:
    """
    A compiled escape sequence: fn(context, page) -> str.

    Only codes with needs_page set are given the PageContext; the others
    always get None.
    """
    fn: Callable[[object, Optional[PageContext]], str]
    needs_page: bool = False


Segment = Union[Literal, Code]


@dataclass(frozen=True)
class FormatProgram:
    """
    Compiled template.

    Programs compare equal when they were compiled from the same template,
    since they then render identically.
    """
    template: str
    segments: Tuple[Segment, ...] = field(compare=False, repr=False)
    has_message: bool = field(default=False, compare=False)
    has_datetime: bool = field(default=False, compare=False)
    page_number_count: int = field(default=0, compare=False)
    serial_count: int = field(default=0, compare=False)
    # %n or %t, which put a newline or a tab into the text
    has_control_char: bool = field(default=False, compare=False)

    @property
    def has_page_number(self) -> bool:
        return self.page_number_count > 0

    @classmethod
    def check(cls, template: str) -> bool:
        """Return whether the template compiles, without raising."""
        try:
            compile_format(template)
        except FormatError:
            return False
        return True

    def render(self, context=None, page: Optional[PageContext] = None) -> str:
        """
        Evaluate the program.

        Args:
            context: MessageContext supplying the message data; may be None
                     when the template has no message dependent codes
            page: Page numbers for @p/@P, or None for the sentinel values

        Returns:
            The rendered string
        """
        parts = []
        for segment in self.segments:
            if isinstance(segment, Literal):
                parts.append(segment.text)
            else:
                parts.append(segment.fn(context, page if segment.needs_page else None))
        return ''.join(parts)


#
# strftime family
#

def _fraction(dt: datetime, digits: int = 9) -> str:
    nanos = f"{dt.microsecond * 1000:09d}"
    return nanos[:digits] if digits <= 9 else nanos.ljust(digits, '0')


# Letters whose strftime support differs between platforms
_LETTER_FUNCS = {
    '%': lambda dt: '%',
    'C': lambda dt: f"{dt.year // 100:02d}",
    'D': lambda dt: dt.strftime('%m/%d/%y'),
    'e': lambda dt: f"{dt.day:2d}",
    'F': lambda dt: dt.strftime('%Y-%m-%d'),
    'g': lambda dt: f"{dt.isocalendar()[0] % 100:02d}",
    'G': lambda dt: str(dt.isocalendar()[0]),
    'h': lambda dt: dt.strftime('%b'),
    'k': lambda dt: f"{dt.hour:2d}",
    'l': lambda dt: f"{(dt.hour % 12) or 12:2d}",
    'n': lambda dt: '\n',
    'N': _fraction,
    'r': lambda dt: dt.strftime('%I:%M:%S %p'),
    'R': lambda dt: dt.strftime('%H:%M'),
    's': lambda dt: str(int(dt.timestamp())),
    't': lambda dt: '\t',
    'T': lambda dt: dt.strftime('%H:%M:%S'),
    'u': lambda dt: str(dt.isoweekday()),
    'V': lambda dt: f"{dt.isocalendar()[1]:02d}",
}

# Accessors for the %{word} form
_DATETIME_WORDS = {
    'year': lambda dt: str(dt.year),
    'month': lambda dt: str(dt.month),
    'day': lambda dt: str(dt.day),
    'hour': lambda dt: str(dt.hour),
    'minute': lambda dt: str(dt.minute),
    'second': lambda dt: str(dt.second),
    'day_of_year': lambda dt: str(dt.timetuple().tm_yday),
    'day_of_week': lambda dt: str(dt.isoweekday()),
    'month_name': lambda dt: dt.strftime('%B'),
    'month_abbr': lambda dt: dt.strftime('%b'),
    'day_name': lambda dt: dt.strftime('%A'),
    'day_abbr': lambda dt: dt.strftime('%a'),
    'ymd': lambda dt: dt.strftime('%Y-%m-%d'),
    'dmy': lambda dt: dt.strftime('%d-%m-%Y'),
    'mdy': lambda dt: dt.strftime('%m-%d-%Y'),
    'hms': lambda dt: dt.strftime('%H:%M:%S'),
    'epoch': lambda dt: str(int(dt.timestamp())),
    'quarter': lambda dt: str((dt.month - 1) // 3 + 1),
    'week_number': lambda dt: str(dt.isocalendar()[1]),
    'iso8601': lambda dt: dt.strftime('%Y-%m-%dT%H:%M:%S'),
    'time_zone_short_name': lambda dt: dt.tzname() or '',
}

_STRFTIME_RE = re.compile(
    r'\{(?P<word>\w+)\}|(?P<digits>\d+)N|(?P<letter>[' + re.escape(STRFTIME_LETTERS) + r'])'
)


def _datetime_function(match) -> Callable[[datetime], str]:
    if match.group('word'):
        word = match.group('word')
        if word not in _DATETIME_WORDS:
            raise FormatError(f"Unknown strftime pattern encountered at %{{{word}}}")
        return _DATETIME_WORDS[word]
    if match.group('digits'):
        digits = int(match.group('digits'))
        return lambda dt: _fraction(dt, digits)
    letter = match.group('letter')
    if letter in _LETTER_FUNCS:
        return _LETTER_FUNCS[letter]
    pattern = '%' + letter
    return lambda dt: dt.strftime(pattern)


#
# Modifier pipeline for address and phrase codes
#

@dataclass(frozen=True)
class Modifiers:
    """Modifiers of an address or phrase code."""
    indices: Optional[Tuple[int, ...]] = None
    case: Optional[str] = None
    strip_quotes: bool = True
    space: Optional[str] = '_'
    separator: str = ','


PHRASE_DEFAULTS = Modifiers()
ADDRESS_DEFAULTS = Modifiers(strip_quotes=False, space=None)

_QUOTED_RE = re.compile(r'^(["\'])(.*)\1$', re.S)


def _select_range(values: List[str], mods: Modifiers) -> List[str]:
    if mods.indices is None:
        return values
    return [values[i] for i in mods.indices if i < len(values)]


def _fold_case(values: List[str], mods: Modifiers) -> List[str]:
    if mods.case == 'L':
        return [v.lower() for v in values]
    if mods.case == 'U':
        return [v.upper() for v in values]
    return values


def _strip_quotes(values: List[str], mods: Modifiers) -> List[str]:
    if not mods.strip_quotes:
        return values
    return [_QUOTED_RE.sub(r'\2', v) for v in values]


def _replace_spaces(values: List[str], mods: Modifiers) -> List[str]:
    if mods.space is None:
        return values
    return [v.replace(' ', mods.space) for v in values]


def _join(values: List[str], mods: Modifiers) -> str:
    return mods.separator.join(values)


# Applied in this order regardless of the order the modifiers were written in
PIPELINE = (
    ('range', _select_range),
    ('case', _fold_case),
    ('quote', _strip_quotes),
    ('space', _replace_spaces),
    ('join', _join),
)


def apply_modifiers(values: Sequence[str], mods: Modifiers) -> str:
    """Run a list of values through the modifier pipeline."""
    result = list(values)
    for _stage, transform in PIPELINE:
        result = transform(result, mods)
    return result


def parse_index_list(spec: str) -> Tuple[int, ...]:
    """
    Convert an index list like '5-7,3' into 0-based indices (4, 5, 6, 2).
    """
    indices: List[int] = []
    for item in spec.split(','):
        if '-' in item:
            first, last = item.split('-', 1)
            indices.extend(range(int(first) - 1, int(last)))
        else:
            indices.append(int(item) - 1)
    return tuple(indices)


#
# @ code families
#

_RANGE = r'[1-9]\d*(?:[,-][1-9]\d*)*'

_ADDRESS_RE = re.compile(r'''
    (?:,\{(?P<sep>[^{}]*)\})?
    (?P<part>[uh])?
    (?P<range>''' + _RANGE + r''')?
    (?P<code>[bcfst])
''', re.X)

_PHRASE_RE = re.compile(r'''
    (?:,\{(?P<sep>[^{}]*)\})?
    (?:_\{(?P<space>[^{}]*)\})?
    (?P<quote>")?
    (?P<case>[LU])?
    (?P<range>''' + _RANGE + r''')?
    (?P<code>[BCDFST])
''', re.X)

_NUMBER_RE = re.compile(r'''
    (?:_\{(?P<fill>[^{}])\})?
    (?P<left>-)?
    (?:(?P<width>[1-9]\d*)|(?P<auto>\*))?
    (?P<code>[nNoOpP])
''', re.X)

_SIMPLE_RE = re.compile(r'(?P<code>[jm])')
_HEADER_RE = re.compile(r'[Hh]?\{(?P<name>[A-Za-z-]+)\}')
_ESCAPE_RE = re.compile(r'[%@]')

ADDRESS_FIELDS = {'b': 'bcc', 'c': 'cc', 'f': 'from', 's': 'sender', 't': 'to'}
_ADDRESS_PARTS = {None: 'address', 'u': 'user', 'h': 'host'}

# code -> (context method for the value, context method for the maximum)
_SERIAL_SOURCES = {
    'n': ('get_day_serial', 'get_max_day_count'),
    'N': ('get_day_count', 'get_max_day_count'),
    'o': ('get_box_serial', 'get_box_count'),
    'O': ('get_box_count', 'get_box_count'),
}


def _page_number(page: Optional[PageContext]) -> int:
    return page.page_number if page else PAGE_NUMBER_SENTINEL


def _page_count(page: Optional[PageContext]) -> int:
    return page.page_count if page else PAGE_COUNT_SENTINEL


def _format_number(value: int, width: Optional[int], left: bool, fill: str) -> str:
    text = str(value)
    if width:
        text = text.ljust(width) if left else text.rjust(width)
    return text.replace(' ', fill)


class _TemplateCompiler:
    """Single-use compiler state for one template."""

    def __init__(self, template: str):
        self.template = template
        self.segments: List[Segment] = []
        self.has_message = False
        self.has_datetime = False
        self.page_number_count = 0
        self.serial_count = 0
        self.has_control_char = False
        self.phrase_defaults = PHRASE_DEFAULTS

    def compile(self) -> FormatProgram:
        template = self.template
        if '\n' in template:
            raise FormatError("no literal newlines allowed in format")
        pos = 0
        while True:
            escape = _ESCAPE_RE.search(template, pos)
            if escape is None:
                break
            self._literal(template[pos:escape.start()])
            if escape.group() == '%':
                pos = self._compile_datetime(escape.end())
            else:
                pos = self._compile_at(escape.end())
        self._literal(template[pos:])
        return FormatProgram(
            template=template,
            segments=tuple(self.segments),
            has_message=self.has_message,
            has_datetime=self.has_datetime,
            page_number_count=self.page_number_count,
            serial_count=self.serial_count,
            has_control_char=self.has_control_char,
        )

    def _literal(self, text: str) -> None:
        if not text:
            return
        if self.segments and isinstance(self.segments[-1], Literal):
            self.segments[-1] = Literal(self.segments[-1].text + text)
        else:
            self.segments.append(Literal(text))

    def _code(self, fn, needs_page: bool = False) -> None:
        self.segments.append(Code(fn, needs_page))

    def _compile_datetime(self, pos: int) -> int:
        match = _STRFTIME_RE.match(self.template, pos)
        if match is None:
            raise FormatError(
                f"Wrong strftime pattern encountered at %{self.template[pos:]}"
            )
        func = _datetime_function(match)
        self._code(lambda context, page: func(context.get_timestamp()))
        self.has_message = True
        self.has_datetime = True
        if match.group('letter') in ('n', 't'):
            self.has_control_char = True
        return match.end()

    def _compile_at(self, pos: int) -> int:
        template = self.template
        for regex, handler in (
            (_ADDRESS_RE, self._address),
            (_PHRASE_RE, self._phrase),
            (_NUMBER_RE, self._number),
            (_SIMPLE_RE, self._simple),
            (_HEADER_RE, self._header),
        ):
            match = regex.match(template, pos)
            if match:
                handler(match)
                return match.end()
        if template.startswith('@', pos):
            self._literal('@')
            return pos + 1
        raise FormatError(f"Wrong email pattern encountered at @{template[pos:]}")

    def _indices(self, match, code: str) -> Optional[Tuple[int, ...]]:
        if not match.group('range'):
            return None
        if code in ('s', 'S'):
            logger.warning(f"Ignoring range with '{code}' in format {self.template}")
            return None
        return parse_index_list(match.group('range'))

    def _address(self, match) -> None:
        code = match.group('code')
        mods = ADDRESS_DEFAULTS
        if match.group('sep') is not None:
            mods = replace(mods, separator=match.group('sep'))
        indices = self._indices(match, code)
        if indices is not None:
            mods = replace(mods, indices=indices)
        header = ADDRESS_FIELDS[code]
        part = _ADDRESS_PARTS[match.group('part')]

        def address_code(context, page):
            values = [getattr(addr, part) for addr in context.get_addresses(header)]
            return apply_modifiers(values, mods)

        self._code(address_code)
        self.has_message = True

    def _phrase(self, match) -> None:
        code = match.group('code')
        mods = self.phrase_defaults
        if match.group('sep') is not None:
            mods = replace(mods, separator=match.group('sep'))
        if match.group('space') is not None:
            mods = replace(mods, space=match.group('space'))
        if match.group('quote'):
            mods = replace(mods, strip_quotes=False)
        if match.group('case'):
            mods = replace(mods, case=match.group('case'))
        if match.group('range'):
            mods = replace(mods, indices=self._indices(match, code))
        self.has_message = True
        if code == 'D':
            self.phrase_defaults = mods
            return
        header = ADDRESS_FIELDS[code.lower()]

        def phrase_code(context, page):
            values = [addr.phrase_or_address for addr in context.get_addresses(header)]
            return apply_modifiers(values, mods)

        self._code(phrase_code)

    def _number(self, match) -> None:
        code = match.group('code')
        fill = match.group('fill') if match.group('fill') is not None else ''
        left = bool(match.group('left'))
        width = int(match.group('width')) if match.group('width') else None
        auto = bool(match.group('auto'))

        if code in ('p', 'P'):
            value_of = _page_number if code == 'p' else _page_count

            def page_code(context, page):
                fixed = len(str(_page_count(page))) if auto else width
                return _format_number(value_of(page), fixed, left, fill)

            self._code(page_code, needs_page=True)
            self.page_number_count += 1
            return

        value_method, max_method = _SERIAL_SOURCES[code]

        def serial_code(context, page):
            value = getattr(context, value_method)()
            fixed = len(str(getattr(context, max_method)())) if auto else width
            return _format_number(value, fixed, left, fill)

        self._code(serial_code)
        self.has_message = True
        self.serial_count += 1

    def _simple(self, match) -> None:
        if match.group('code') == 'j':
            self._code(lambda context, page: context.get_subject())
        else:
            self._code(lambda context, page: context.get_message_id())
        self.has_message = True

    def _header(self, match) -> None:
        name = match.group('name')
        self._code(lambda context, page: ','.join(context.get_header(name)))
        self.has_message = True


def compile_format(template: str) -> FormatProgram:
    """
    Compile a template string.

    Args:
        template: The template, on a single line

    Returns:
        The compiled FormatProgram

    Raises:
        FormatError: if the template contains a newline or a malformed escape
    """
    return _TemplateCompiler(template).compile()
