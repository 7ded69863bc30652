"""
text_formatter.py - Ion text output

Formats scalars in their canonical text form and lays out containers,
either compact (`{a:1,b:[true,null]}`) or pretty-printed with one child
per line.

Usage:
    formatter = TextFormatter(pretty=True)
    formatter.encode_value(ion_value({'a': 1}))
    formatter.take()     # '{\\n  a: 1\\n}'
"""

import base64
import math
import re
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from .context import ContainerFrame
from .errors import IonTypeError, IonUsageError
from .ion_types import IonType, IonValue, SymbolToken, Timestamp, TimestampPrecision
from .text_tokenizer import KEYWORDS

BARE_SYMBOL_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_$]*\Z')

NAMED_ESCAPES = {
    '\0': '\\0', '\a': '\\a', '\b': '\\b', '\t': '\\t', '\n': '\\n',
    '\v': '\\v', '\f': '\\f', '\r': '\\r', '\\': '\\\\',
}
OPENERS = {IonType.LIST: '[', IonType.SEXP: '(', IonType.STRUCT: '{'}
CLOSERS = {IonType.LIST: ']', IonType.SEXP: ')', IonType.STRUCT: '}'}

# exponents below this are written in d-notation instead of with leading zeros
SMALL_DECIMAL_ZEROS = 6


# =============================================================================
# Scalars
# =============================================================================

def escape_text(text: str, quote: str) -> str:
    out = []
    for ch in text:
        if ch == quote:
            out.append('\\' + ch)
            continue
        named = NAMED_ESCAPES.get(ch)
        if named is not None:
            out.append(named)
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f'\\x{ord(ch):02x}')
        elif 0xD800 <= ord(ch) <= 0xDFFF:
            raise IonTypeError(f"Lone surrogate U+{ord(ch):04X} cannot be written")
        else:
            out.append(ch)
    return ''.join(out)


def format_symbol(symbol: SymbolToken) -> str:
    """Bare identifier when possible, `$N` for unknown text, else quoted."""
    text = symbol.text
    if text is None:
        return f'${symbol.sid}'
    if BARE_SYMBOL_RE.match(text) and text not in KEYWORDS:
        return text
    return "'" + escape_text(text, "'") + "'"


def format_string(text: str) -> str:
    return '"' + escape_text(text, '"') + '"'


def format_float(value: float) -> str:
    if math.isnan(value):
        return 'nan'
    if math.isinf(value):
        return '+inf' if value > 0 else '-inf'
    text = repr(value)
    if 'e' in text:
        mantissa, exponent = text.split('e')
        return f'{mantissa}e{int(exponent)}'
    return text + 'e0'


def format_decimal(value: Decimal) -> str:
    sign, digits, exponent = value.as_tuple()
    if not isinstance(exponent, int):
        raise IonTypeError(f"Ion decimals cannot represent {value}")
    prefix = '-' if sign else ''
    coefficient = ''.join(map(str, digits))
    if exponent == 0:
        return f'{prefix}{coefficient}.'
    if exponent > 0:
        return f'{prefix}{coefficient}d{exponent}'
    scale = -exponent
    if len(coefficient) > scale:
        return f'{prefix}{coefficient[:-scale]}.{coefficient[-scale:]}'
    zeros = scale - len(coefficient)
    if zeros < SMALL_DECIMAL_ZEROS:
        return f'{prefix}0.{"0" * zeros}{coefficient}'
    return f'{prefix}{coefficient}d{exponent}'


def _format_offset(offset: Optional[int]) -> str:
    if offset is None:
        return '-00:00'
    if offset == 0:
        return 'Z'
    sign = '-' if offset < 0 else '+'
    hours, minutes = divmod(abs(offset), 60)
    return f'{sign}{hours:02d}:{minutes:02d}'


def format_timestamp(ts: Timestamp) -> str:
    precision = ts.precision
    if precision is TimestampPrecision.YEAR:
        return f'{ts.year:04d}T'
    if precision is TimestampPrecision.MONTH:
        return f'{ts.year:04d}-{ts.month:02d}T'
    text = f'{ts.year:04d}-{ts.month:02d}-{ts.day:02d}'
    if precision is TimestampPrecision.DAY:
        return text
    text += f'T{ts.hour:02d}:{ts.minute:02d}'
    if precision >= TimestampPrecision.SECOND:
        text += f':{ts.second:02d}'
    if precision is TimestampPrecision.FRACTION:
        _, digits, exponent = ts.fraction.as_tuple()
        text += '.' + ''.join(map(str, digits)).rjust(-exponent, '0')
    return text + _format_offset(ts.offset)


def format_clob(data: bytes) -> str:
    out = []
    for byte in bytes(data):
        ch = chr(byte)
        if ch in '"\\':
            out.append('\\' + ch)
        elif 0x20 <= byte < 0x7F:
            out.append(ch)
        else:
            out.append(f'\\x{byte:02x}')
    return '{{"' + ''.join(out) + '"}}'


def format_scalar(ion_type: IonType, value) -> str:
    """Text for a non-null scalar of the given type."""
    try:
        if ion_type is IonType.BOOL:
            return 'true' if value else 'false'
        if ion_type is IonType.INT:
            if isinstance(value, bool) or not isinstance(value, int):
                raise IonTypeError(f"int value expected, got {type(value).__name__}")
            if value.bit_length() < 12000:
                return str(value)
            # Decimal formatting is not subject to the int digit limit
            return format_decimal(Decimal(value))[:-1]
        if ion_type is IonType.FLOAT:
            return format_float(float(value))
        if ion_type is IonType.DECIMAL:
            return format_decimal(value)
        if ion_type is IonType.TIMESTAMP:
            return format_timestamp(value)
        if ion_type is IonType.SYMBOL:
            return format_symbol(value)
        if ion_type is IonType.STRING:
            return format_string(value)
        if ion_type is IonType.CLOB:
            return format_clob(value)
        if ion_type is IonType.BLOB:
            return '{{' + base64.b64encode(bytes(value)).decode('ascii') + '}}'
    except (AttributeError, TypeError) as e:
        raise IonTypeError(f"Cannot format {type(value).__name__} as {ion_type.text_name}: {e}")
    raise IonTypeError(f"{ion_type.text_name} is not a scalar type")


def format_null(ion_type: IonType) -> str:
    return 'null' if ion_type is IonType.NULL else f'null.{ion_type.text_name}'


# =============================================================================
# Layout
# =============================================================================

class TextFormatter:
    """Lays out Ion text values. Frames count the children written so far."""

    def __init__(self, pretty: bool = False, indent: int = 2,
                 frames: Optional[List[ContainerFrame]] = None):
        self.pretty = pretty
        self.indent = ' ' * indent
        self.frames = frames if frames is not None else []
        self._out: List[str] = []
        self._top_level_count = 0

    @property
    def depth(self) -> int:
        return len(self.frames)

    def _newline(self, depth: int) -> str:
        return '\n' + self.indent * depth

    def _begin_value(self, annotations: Sequence[SymbolToken], field_name: Optional[SymbolToken]):
        out = self._out
        if not self.frames:
            if self._top_level_count:
                out.append('\n' if self.pretty else ' ')
            self._top_level_count += 1
        else:
            frame = self.frames[-1]
            if frame.ion_type is IonType.STRUCT and field_name is None:
                raise IonUsageError("Values inside a struct need a field name")
            if frame.ion_type is IonType.SEXP:
                if frame.start:
                    out.append(' ')
            else:
                if frame.start:
                    out.append(',')
                if self.pretty:
                    out.append(self._newline(self.depth))
            frame.start += 1
            if frame.ion_type is IonType.STRUCT:
                out.append(format_symbol(field_name))
                out.append(': ' if self.pretty else ':')
        for annotation in annotations:
            out.append(format_symbol(annotation))
            out.append('::')

    def write_version_marker(self):
        self._begin_value((), None)
        self._out.append('$ion_1_0')

    def write_null(self, ion_type: IonType = IonType.NULL, annotations: Sequence[SymbolToken] = (),
                   field_name: Optional[SymbolToken] = None):
        self._begin_value(annotations, field_name)
        self._out.append(format_null(ion_type))

    def write_scalar(self, ion_type: IonType, value, annotations: Sequence[SymbolToken] = (),
                     field_name: Optional[SymbolToken] = None):
        text = format_null(ion_type) if value is None else format_scalar(ion_type, value)
        self._begin_value(annotations, field_name)
        self._out.append(text)

    def begin_container(self, ion_type: IonType, annotations: Sequence[SymbolToken] = (),
                        field_name: Optional[SymbolToken] = None):
        if not ion_type.is_container:
            raise IonTypeError(f"{ion_type.text_name} is not a container type")
        self._begin_value(annotations, field_name)
        self._out.append(OPENERS[ion_type])
        self.frames.append(ContainerFrame(ion_type, start=0))

    def end_container(self):
        if not self.frames:
            raise IonUsageError("No open container to end")
        frame = self.frames.pop()
        if self.pretty and frame.start and frame.ion_type is not IonType.SEXP:
            self._out.append(self._newline(self.depth))
        self._out.append(CLOSERS[frame.ion_type])

    def encode_value(self, value: IonValue, field_name: Optional[SymbolToken] = None):
        stack = [iter([(field_name, value)])]
        while stack:
            try:
                name, item = next(stack[-1])
            except StopIteration:
                stack.pop()
                if stack:
                    self.end_container()
                continue
            if item.is_null:
                self.write_null(item.ion_type, item.annotations, name)
            elif item.ion_type.is_container:
                self.begin_container(item.ion_type, item.annotations, name)
                if item.ion_type is IonType.STRUCT:
                    stack.append(iter(item.value))
                else:
                    stack.append((None, child) for child in item.value)
            else:
                self.write_scalar(item.ion_type, item.value, item.annotations, name)

    def mark(self) -> Tuple[int, int]:
        return len(self._out), self._top_level_count

    def rewind(self, mark: Tuple[int, int]):
        """Discard output written since mark()."""
        del self._out[mark[0]:]
        self._top_level_count = mark[1]

    def take(self) -> str:
        text = ''.join(self._out)
        self._out.clear()
        return text
