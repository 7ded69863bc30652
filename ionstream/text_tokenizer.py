"""
text_tokenizer.py - Ion text tokenizer and literal conversion

Splits Ion text into tokens. Numeric and timestamp tokens keep their
source text; conversion to Python values happens only when a value is
read (parse_int, parse_float, parse_decimal, parse_timestamp, parse_blob).
Strings, quoted symbols and clobs are unescaped while scanning since the
escapes decide where they end.

When the buffer ends where more input could change the current token
(inside a literal, or just after one that might continue) TruncatedInput
is raised and the position is left unchanged. With `final` set the end of
the buffer is a real end of input.

Usage:
    tokens = TextTokenizer('{a: 1}')
    tokens.next_token().kind     # TokenType.LBRACE
"""

import base64
import codecs
import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Tuple

from .errors import MalformedInput, TruncatedInput
from .ion_types import TYPE_BY_NAME, Timestamp

COMPACT_THRESHOLD = 64 * 1024


class TokenType(Enum):
    EOF = 'eof'
    LBRACKET = '['
    RBRACKET = ']'
    LPAREN = '('
    RPAREN = ')'
    LBRACE = '{'
    RBRACE = '}'
    COMMA = ','
    COLON = ':'
    DOUBLE_COLON = '::'
    IDENTIFIER = 'identifier'
    QUOTED_SYMBOL = 'quoted symbol'
    OPERATOR = 'operator'
    STRING = 'string'
    INT = 'int'
    FLOAT = 'float'
    DECIMAL = 'decimal'
    TIMESTAMP = 'timestamp'
    TYPED_NULL = 'typed null'
    BLOB = 'blob'
    CLOB = 'clob'


class Token:
    __slots__ = ('kind', 'value', 'offset')

    def __init__(self, kind: TokenType, value, offset: int):
        self.kind = kind
        self.value = value
        self.offset = offset

    def __repr__(self):
        return f"Token({self.kind.name}, {self.value!r}, offset={self.offset})"


PUNCTUATION = {
    '[': TokenType.LBRACKET,
    ']': TokenType.RBRACKET,
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '}': TokenType.RBRACE,
    ',': TokenType.COMMA,
}

KEYWORDS = frozenset(('true', 'false', 'null', 'nan'))

WHITESPACE = frozenset(' \t\n\r\v\f')
STOP_CHARS = frozenset('{}[](),"\' \t\n\r\v\f')
OPERATOR_CHARS = frozenset('!#%&*+-./;<=>?@^`|~')
DIGITS = frozenset('0123456789')

IDENTIFIER_RE = re.compile(r'[A-Za-z_$][A-Za-z0-9_$]*')
TYPE_NAME_RE = re.compile(r'[a-z]*')
NUMBER_RUN_RE = re.compile(r'[0-9A-Za-z_.:+\-]*')
BLOB_RUN_RE = re.compile(r'[A-Za-z0-9+/=\s]*')
HEX_RE = re.compile(r'[0-9a-fA-F]+')
SHORT_STOP_RE = {
    '"': re.compile(r'["\\\n\r]'),
    "'": re.compile(r"['\\\n\r]"),
}
LONG_STOP_RE = re.compile(r"'''|\\")

_DIGITS = r'[0-9](?:_?[0-9])*'
_INT_PART = r'-?(?:0|[1-9](?:_?[0-9])*)'

INT_RE = re.compile(
    rf'{_INT_PART}|-?0[xX][0-9a-fA-F](?:_?[0-9a-fA-F])*|-?0[bB][01](?:_?[01])*')
FLOAT_RE = re.compile(rf'{_INT_PART}(?:\.(?:{_DIGITS})?)?[eE][+-]?{_DIGITS}')
DECIMAL_RE = re.compile(
    rf'{_INT_PART}(?:\.(?:{_DIGITS})?(?:[dD][+-]?{_DIGITS})?|[dD][+-]?{_DIGITS})')
TIMESTAMP_RE = re.compile(
    r'(?P<year>\d{4})'
    r'(?:T|-(?P<month>\d{2})'
    r'(?:T|-(?P<day>\d{2})'
    r'(?:T(?P<hour>\d{2}):(?P<minute>\d{2})'
    r'(?::(?P<second>\d{2})(?P<fraction>\.\d+)?)?'
    r'(?P<offset>Z|[+-]\d{2}:\d{2})|T?)))')

SIMPLE_ESCAPES = {
    'a': '\a', 'b': '\b', 't': '\t', 'n': '\n', 'f': '\f', 'r': '\r', 'v': '\v',
    '?': '?', '0': '\0', "'": "'", '"': '"', '/': '/', '\\': '\\',
}
HEX_ESCAPE_WIDTH = {'x': 2, 'u': 4, 'U': 8}


# =============================================================================
# Literal conversion
# =============================================================================

def parse_int(text: str) -> int:
    text = text.replace('_', '')
    negative = text.startswith('-')
    body = text[1:] if negative else text
    prefix = body[:2].lower()
    if prefix == '0x':
        value = int(body[2:], 16)
    elif prefix == '0b':
        value = int(body[2:], 2)
    elif len(body) < 4000:
        value = int(body)
    else:
        # Decimal parsing is not subject to the int digit limit
        value = int(Decimal(body))
    return -value if negative else value


def parse_float(text: str) -> float:
    if text in ('nan', '+inf', '-inf'):
        return float(text)
    return float(text.replace('_', ''))


def parse_decimal(text: str) -> Decimal:
    normalized = text.replace('_', '').replace('d', 'e').replace('D', 'e')
    try:
        return Decimal(normalized)
    except InvalidOperation:
        raise ValueError(f"Invalid decimal {text!r}")


def _parse_offset(text: Optional[str]) -> Optional[int]:
    if text is None or text == '-00:00':
        return None
    if text == 'Z':
        return 0
    hours, minutes = int(text[1:3]), int(text[4:6])
    if hours > 23 or minutes > 59:
        raise ValueError(f"Offset out of range: {text}")
    value = hours * 60 + minutes
    return -value if text[0] == '-' else value


def parse_timestamp(text: str) -> Timestamp:
    match = TIMESTAMP_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"Invalid timestamp {text!r}")
    parts = match.groupdict()

    def number(name):
        value = parts[name]
        return None if value is None else int(value)

    fraction = None
    if parts['fraction'] is not None:
        fraction = Decimal('0' + parts['fraction'])
    return Timestamp(number('year'), number('month'), number('day'), number('hour'),
                     number('minute'), number('second'), fraction, _parse_offset(parts['offset']))


def parse_blob(text: str) -> bytes:
    data = ''.join(text.split())
    if len(data) % 4:
        raise ValueError("Base64 length is not a multiple of 4")
    return base64.b64decode(data, validate=True)


# =============================================================================
# Tokenizer
# =============================================================================

class TextTokenizer:
    """Tokenizer over a growing text buffer."""

    def __init__(self, data='', final: bool = True):
        self._decoder = codecs.getincrementaldecoder('utf-8')()
        self._buf = ''
        self._pos = 0
        self._base = 0
        self._line_base = 1
        self._col_base = 0
        self.final = False
        self.feed(data)
        self.final = final
        if final:
            self._finish_decoding()

    # -- input ----------------------------------------------------------------

    def feed(self, data):
        if isinstance(data, str):
            self._buf += data
            return
        try:
            self._buf += self._decoder.decode(bytes(data))
        except UnicodeDecodeError as e:
            raise MalformedInput(f"Invalid UTF-8: {e.reason}", offset=self._base + len(self._buf))

    def close_input(self):
        self._finish_decoding()
        self.final = True

    def _finish_decoding(self):
        try:
            self._buf += self._decoder.decode(b'', final=True)
        except UnicodeDecodeError as e:
            raise MalformedInput(f"Truncated UTF-8 sequence: {e.reason}",
                                 offset=self._base + len(self._buf))

    def mark(self) -> int:
        return self._pos

    def reset(self, mark: int):
        self._pos = mark

    def compact(self):
        """Drop consumed text, keeping line and column bookkeeping."""
        consumed = self._pos
        if not consumed or (consumed < COMPACT_THRESHOLD and consumed != len(self._buf)):
            return
        dropped = self._buf[:consumed]
        newlines = dropped.count('\n')
        if newlines:
            self._line_base += newlines
            self._col_base = consumed - dropped.rfind('\n') - 1
        else:
            self._col_base += consumed
        self._buf = self._buf[consumed:]
        self._base += consumed
        self._pos = 0

    # -- diagnostics ----------------------------------------------------------

    def location(self, index: int) -> Tuple[int, int]:
        """1-based (line, column) of a buffer index."""
        head = self._buf[:index]
        newlines = head.count('\n')
        if newlines:
            return self._line_base + newlines, index - head.rfind('\n')
        return self._line_base, self._col_base + index + 1

    def _error(self, message: str, index: int) -> MalformedInput:
        line, column = self.location(index)
        return MalformedInput(message, offset=self._base + index, line=line, column=column)

    def _truncated(self, message: str, index: int) -> TruncatedInput:
        line, column = self.location(index)
        return TruncatedInput(message, offset=self._base + index, line=line, column=column)

    def error(self, message: str, offset: int) -> MalformedInput:
        """MalformedInput at an absolute offset (as carried by tokens)."""
        return self._error(message, offset - self._base)

    def truncated(self, message: str, offset: int) -> TruncatedInput:
        return self._truncated(message, offset - self._base)

    # -- character access -----------------------------------------------------

    def _peek_char(self, index: int) -> str:
        """Character at index; '' at the end of final input."""
        if index < len(self._buf):
            return self._buf[index]
        if self.final:
            return ''
        raise self._truncated("Waiting for more input", index)

    def _lookahead(self, index: int, word: str) -> bool:
        for k, ch in enumerate(word):
            if self._peek_char(index + k) != ch:
                return False
        return True

    def _at_stop(self, index: int) -> bool:
        c = self._peek_char(index)
        if c == '' or c in STOP_CHARS:
            return True
        return c == '/' and self._peek_char(index + 1) in ('/', '*')

    def _skip_whitespace(self, index: int, comments: bool = True) -> int:
        buf = self._buf
        while index < len(buf):
            c = buf[index]
            if c in WHITESPACE:
                index += 1
                continue
            if comments and c == '/':
                following = self._peek_char(index + 1)
                if following == '/':
                    end = buf.find('\n', index + 2)
                    if end < 0:
                        if self.final:
                            return len(buf)
                        raise self._truncated("Waiting for the end of a comment", index)
                    index = end + 1
                    continue
                if following == '*':
                    end = buf.find('*/', index + 2)
                    if end < 0:
                        raise self._truncated("Unterminated block comment", index)
                    index = end + 2
                    continue
            break
        return index

    # -- tokens ---------------------------------------------------------------

    def peek_token(self, in_sexp: bool = False) -> Token:
        saved = self._pos
        try:
            return self.next_token(in_sexp)
        finally:
            self._pos = saved

    def next_token(self, in_sexp: bool = False) -> Token:
        """Scan the next token. Operators are only recognized inside s-expressions."""
        i = self._skip_whitespace(self._pos)
        buf = self._buf
        if i >= len(buf):
            if self.final:
                self._pos = i
                return Token(TokenType.EOF, None, self._base + i)
            raise self._truncated("Waiting for more input", i)

        offset = self._base + i
        c = buf[i]
        kind = PUNCTUATION.get(c)
        if kind is not None:
            self._pos = i + 1
            return Token(kind, c, offset)
        if c == '{':
            if self._peek_char(i + 1) == '{':
                return self._lob(i)
            self._pos = i + 1
            return Token(TokenType.LBRACE, c, offset)
        if c == ':':
            if self._peek_char(i + 1) == ':':
                self._pos = i + 2
                return Token(TokenType.DOUBLE_COLON, '::', offset)
            self._pos = i + 1
            return Token(TokenType.COLON, c, offset)
        if c == '"':
            text, self._pos = self._short_text(i + 1, '"')
            return Token(TokenType.STRING, text, offset)
        if c == "'":
            if self._lookahead(i, "'''"):
                text, self._pos = self._long_strings(i)
                return Token(TokenType.STRING, text, offset)
            text, self._pos = self._short_text(i + 1, "'")
            return Token(TokenType.QUOTED_SYMBOL, text, offset)
        if c in DIGITS:
            return self._number(i)
        if c in '+-':
            if self._lookahead(i + 1, 'inf') and self._at_stop(i + 4):
                self._pos = i + 4
                return Token(TokenType.FLOAT, c + 'inf', offset)
            if c == '-' and self._peek_char(i + 1) in DIGITS:
                return self._number(i)
            if in_sexp:
                return self._operator(i)
            raise self._error(f"Unexpected character {c!r}", i)
        if c.isascii() and (c.isalpha() or c in '_$'):
            return self._identifier(i)
        if in_sexp and c in OPERATOR_CHARS:
            return self._operator(i)
        raise self._error(f"Unexpected character {c!r}", i)

    def _identifier(self, i: int) -> Token:
        buf = self._buf
        end = IDENTIFIER_RE.match(buf, i).end()
        if end == len(buf) and not self.final:
            raise self._truncated("Waiting for the end of an identifier", i)
        word = buf[i:end]
        if word == 'null' and self._peek_char(end) == '.':
            type_end = TYPE_NAME_RE.match(buf, end + 1).end()
            if type_end == len(buf) and not self.final:
                raise self._truncated("Waiting for the end of a typed null", i)
            name = buf[end + 1:type_end]
            if name not in TYPE_BY_NAME:
                raise self._error(f"Invalid typed null 'null.{name}'", i)
            self._pos = type_end
            return Token(TokenType.TYPED_NULL, name, self._base + i)
        self._pos = end
        return Token(TokenType.IDENTIFIER, word, self._base + i)

    def _operator(self, i: int) -> Token:
        buf = self._buf
        end = i
        while end < len(buf) and buf[end] in OPERATOR_CHARS:
            if end > i and buf[end] == '/' and self._peek_char(end + 1) in ('/', '*'):
                break
            end += 1
        if end == len(buf) and not self.final:
            raise self._truncated("Waiting for the end of an operator", i)
        self._pos = end
        return Token(TokenType.OPERATOR, buf[i:end], self._base + i)

    def _number(self, i: int) -> Token:
        buf = self._buf
        end = NUMBER_RUN_RE.match(buf, i).end()
        if end == len(buf) and not self.final:
            raise self._truncated("Waiting for the end of a number", i)
        text = buf[i:end]
        if not self._at_stop(end):
            raise self._error(f"Invalid character after {text!r}", end)
        if TIMESTAMP_RE.fullmatch(text):
            kind = TokenType.TIMESTAMP
        elif INT_RE.fullmatch(text):
            kind = TokenType.INT
        elif FLOAT_RE.fullmatch(text):
            kind = TokenType.FLOAT
        elif DECIMAL_RE.fullmatch(text):
            kind = TokenType.DECIMAL
        else:
            raise self._error(f"Invalid numeric literal {text!r}", i)
        self._pos = end
        return Token(kind, text, self._base + i)

    # -- quoted text ----------------------------------------------------------

    def _check_clob_chars(self, text: str, index: int):
        for k, ch in enumerate(text):
            if ord(ch) > 0x7F:
                raise self._error("Clob text must be ASCII", index + k)

    def _short_text(self, i: int, quote: str, clob: bool = False) -> Tuple[str, int]:
        """Body of a quoted string or symbol starting after the opening quote."""
        buf = self._buf
        start = i - 1
        stop = SHORT_STOP_RE[quote]
        parts: List[str] = []
        while True:
            match = stop.search(buf, i)
            if match is None:
                raise self._truncated("Unterminated quoted text", start)
            j = match.start()
            if clob:
                self._check_clob_chars(buf[i:j], i)
            parts.append(buf[i:j])
            c = buf[j]
            if c == quote:
                return ''.join(parts), j + 1
            if c == '\\':
                text, i = self._escape(j + 1, clob)
                parts.append(text)
                continue
            raise self._error("Unescaped newline in quoted text", j)

    def _long_text(self, i: int, clob: bool) -> Tuple[str, int]:
        buf = self._buf
        start = i - 3
        parts: List[str] = []
        while True:
            match = LONG_STOP_RE.search(buf, i)
            if match is None:
                raise self._truncated("Unterminated long string", start)
            j = match.start()
            if clob:
                self._check_clob_chars(buf[i:j], i)
            parts.append(buf[i:j])
            if buf[j] == '\\':
                text, i = self._escape(j + 1, clob)
                parts.append(text)
                continue
            return ''.join(parts), j + 3

    def _long_strings(self, i: int, clob: bool = False) -> Tuple[str, int]:
        """One or more adjacent '''long strings''', concatenated."""
        parts: List[str] = []
        while True:
            text, i = self._long_text(i + 3, clob)
            parts.append(text)
            following = self._skip_whitespace(i, comments=not clob)
            if not self._lookahead(following, "'''"):
                return ''.join(parts), i
            i = following

    def _escape(self, i: int, clob: bool) -> Tuple[str, int]:
        """Decode the escape whose character follows the backslash at i - 1."""
        buf = self._buf
        c = self._peek_char(i)
        if c == '':
            raise self._truncated("Unterminated escape sequence", i - 1)
        simple = SIMPLE_ESCAPES.get(c)
        if simple is not None:
            return simple, i + 1
        if c == '\n':
            return '', i + 1
        if c == '\r':
            return '', (i + 2 if self._peek_char(i + 1) == '\n' else i + 1)
        width = HEX_ESCAPE_WIDTH.get(c)
        if width is None or (clob and c != 'x'):
            raise self._error(f"Invalid escape sequence '\\{c}'", i - 1)
        code, end = self._hex_digits(i + 1, width)
        if 0xD800 <= code <= 0xDBFF and not clob:
            if not self._lookahead(end, '\\u'):
                raise self._error("Unpaired high surrogate escape", i - 1)
            low, low_end = self._hex_digits(end + 2, 4)
            if not 0xDC00 <= low <= 0xDFFF:
                raise self._error("Unpaired high surrogate escape", i - 1)
            code = 0x10000 + ((code - 0xD800) << 10) + (low - 0xDC00)
            end = low_end
        elif 0xDC00 <= code <= 0xDFFF:
            raise self._error("Unpaired low surrogate escape", i - 1)
        if code > 0x10FFFF:
            raise self._error(f"Escape exceeds the Unicode range: {code:X}", i - 1)
        return chr(code), end

    def _hex_digits(self, i: int, width: int) -> Tuple[int, int]:
        digits = self._buf[i:i + width]
        if len(digits) < width and not self.final:
            raise self._truncated("Waiting for the rest of an escape sequence", i)
        if len(digits) < width or not HEX_RE.fullmatch(digits):
            raise self._error(f"Invalid hex escape digits {digits!r}", i)
        return int(digits, 16), i + width

    def _lob(self, i: int) -> Token:
        buf = self._buf
        j = self._skip_whitespace(i + 2, comments=False)
        c = self._peek_char(j)
        if c == '"':
            value, j = self._short_text(j + 1, '"', clob=True)
            kind = TokenType.CLOB
        elif c == "'":
            if not self._lookahead(j, "'''"):
                raise self._error("Clob text must be a string", j)
            value, j = self._long_strings(j, clob=True)
            kind = TokenType.CLOB
        else:
            end = BLOB_RUN_RE.match(buf, j).end()
            if end == len(buf):
                raise self._truncated("Unterminated blob", i)
            value, j = buf[j:end], end
            kind = TokenType.BLOB
        j = self._skip_whitespace(j, comments=False)
        if not self._lookahead(j, '}}'):
            raise self._error("Expected '}}' to close the lob", j)
        self._pos = j + 2
        if kind is TokenType.CLOB:
            value = value.encode('latin-1')
        return Token(kind, value, self._base + i)
