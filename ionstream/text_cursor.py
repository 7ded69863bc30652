"""
text_cursor.py - Cursor over Ion text

Each top-level value is parsed into a flat list of nodes before it is
returned. A container node records the index just past its last
descendant, so skipping a container is a jump, and parsing uses an
explicit stack of open containers rather than recursion. Scalars keep
their source token and are converted when read.

Staging a top-level value either completes or raises TruncatedInput with
the tokenizer rewound to the start of the value.
"""

import re
from typing import List, Optional, Tuple

from .context import ContainerFrame
from .errors import IonUsageError, MalformedInput, TruncatedInput
from .ion_types import TYPE_BY_NAME, IonType, RawValue, SymbolToken
from .text_tokenizer import (
    KEYWORDS, TextTokenizer, Token, TokenType,
    parse_blob, parse_decimal, parse_float, parse_int, parse_timestamp,
)

SID_RE = re.compile(r'\$([0-9]+)\Z')
VERSION_MARKER_RE = re.compile(r'\$ion_([0-9]+)_([0-9]+)\Z')

CLOSERS = {
    IonType.LIST: TokenType.RBRACKET,
    IonType.SEXP: TokenType.RPAREN,
    IonType.STRUCT: TokenType.RBRACE,
}
OPENERS = {
    TokenType.LBRACKET: IonType.LIST,
    TokenType.LPAREN: IonType.SEXP,
    TokenType.LBRACE: IonType.STRUCT,
}
SCALAR_TOKENS = {
    TokenType.STRING: IonType.STRING,
    TokenType.QUOTED_SYMBOL: IonType.SYMBOL,
    TokenType.OPERATOR: IonType.SYMBOL,
    TokenType.INT: IonType.INT,
    TokenType.FLOAT: IonType.FLOAT,
    TokenType.DECIMAL: IonType.DECIMAL,
    TokenType.TIMESTAMP: IonType.TIMESTAMP,
    TokenType.BLOB: IonType.BLOB,
    TokenType.CLOB: IonType.CLOB,
}
KEYWORD_TYPES = {
    'true': IonType.BOOL,
    'false': IonType.BOOL,
    'null': IonType.NULL,
    'nan': IonType.FLOAT,
}


class TextNode:
    """One staged value. `end` is the index past its last descendant."""
    __slots__ = ('ion_type', 'token', 'is_null', 'annotations', 'field_name',
                 'offset', 'end', 'version')

    def __init__(self, ion_type: IonType, token: Optional[Token], is_null: bool,
                 annotations: Tuple[SymbolToken, ...], field_name: Optional[SymbolToken],
                 offset: int):
        self.ion_type = ion_type
        self.token = token
        self.is_null = is_null
        self.annotations = annotations
        self.field_name = field_name
        self.offset = offset
        self.end = 0
        self.version = None


def symbol_from_token(token: Token) -> SymbolToken:
    """`$N` identifiers are symbol id references; everything else is text."""
    if token.kind is TokenType.IDENTIFIER:
        match = SID_RE.match(token.value)
        if match:
            return SymbolToken(None, int(match.group(1)))
    return SymbolToken(token.value)


class TextRawCursor:
    """Cursor over Ion text. Symbols carry text, or a sid for `$N` references."""

    encoding = 'text'

    def __init__(self, data='', incremental: bool = False,
                 frames: Optional[List[ContainerFrame]] = None):
        self.tokens = TextTokenizer(data, final=not incremental)
        self.incremental = incremental
        self.frames = frames if frames is not None else []
        self._nodes: List[TextNode] = []
        self._index = 0
        self._current: Optional[int] = None

    @property
    def depth(self) -> int:
        return len(self.frames)

    @property
    def final(self) -> bool:
        return self.tokens.final

    # -- input ----------------------------------------------------------------

    def feed(self, data):
        if not self.incremental:
            raise IonUsageError("feed() needs an incremental reader")
        if self.tokens.final:
            raise IonUsageError("Input has already been closed")
        self.tokens.feed(data)

    def close_input(self):
        self.tokens.close_input()

    def release_views(self):
        pass

    # -- navigation -----------------------------------------------------------

    def next_value(self) -> Optional[RawValue]:
        self._current = None
        if self.frames:
            if self._index >= self.frames[-1].end:
                return None
            index = self._index
            node = self._nodes[index]
            self._index = node.end
            self._current = index
            return self._raw(node)

        self._nodes = []
        if self.incremental:
            self.tokens.compact()
        mark = self.tokens.mark()
        try:
            nodes = self._stage()
        except TruncatedInput:
            self.tokens.reset(mark)
            raise
        if nodes is None:
            return None
        self._nodes = nodes
        self._index = len(nodes)
        node = nodes[0]
        if node.version is not None:
            return RawValue(None, offset=node.offset, version=node.version)
        self._current = 0
        return self._raw(node)

    def _raw(self, node: TextNode) -> RawValue:
        return RawValue(node.ion_type, node.is_null, node.annotations, node.field_name,
                        offset=node.offset, handle=node)

    def step_in(self):
        if self._current is None:
            raise IonUsageError("step_in() requires a non-null container")
        node = self._nodes[self._current]
        if not node.ion_type.is_container or node.is_null:
            raise IonUsageError("step_in() requires a non-null container")
        self.frames.append(ContainerFrame(node.ion_type, end=node.end, start=self._current + 1))
        self._index = self._current + 1
        self._current = None

    def step_out(self):
        if not self.frames:
            raise IonUsageError("step_out() at the top level")
        frame = self.frames.pop()
        self._index = frame.end
        self._current = None

    # -- staging --------------------------------------------------------------

    def _stage(self) -> Optional[List[TextNode]]:
        """Parse one complete top-level value into nodes; None at end of input."""
        tokens = self.tokens
        nodes: List[TextNode] = []
        # open containers: [node index, separator expected]
        open_frames: List[list] = []
        field_name: Optional[SymbolToken] = None

        while True:
            frame = open_frames[-1] if open_frames else None
            container = nodes[frame[0]].ion_type if frame else None
            in_sexp = container is IonType.SEXP
            token = tokens.next_token(in_sexp)

            if frame is not None and token.kind is CLOSERS[container]:
                if field_name is not None:
                    raise tokens.error("Struct field has no value", token.offset)
                nodes[frame[0]].end = len(nodes)
                open_frames.pop()
                if not open_frames:
                    return nodes
                open_frames[-1][1] = True
                continue
            if token.kind is TokenType.EOF:
                if frame is None:
                    return None
                raise tokens.truncated("Input ended inside a container", token.offset)
            if frame is not None and container is not IonType.SEXP and frame[1]:
                if token.kind is not TokenType.COMMA:
                    raise tokens.error(f"Expected ',' or '{CLOSERS[container].value}'", token.offset)
                frame[1] = False
                continue
            if token.kind is TokenType.COMMA:
                raise tokens.error("Unexpected ','", token.offset)

            if container is IonType.STRUCT and field_name is None:
                if token.kind not in (TokenType.IDENTIFIER, TokenType.QUOTED_SYMBOL, TokenType.STRING):
                    raise tokens.error(f"Expected a field name, found {token.kind.value}", token.offset)
                field_name = symbol_from_token(token)
                colon = tokens.next_token()
                if colon.kind is not TokenType.COLON:
                    raise tokens.error("Expected ':' after a field name", colon.offset)
                continue

            annotations = []
            while token.kind in (TokenType.IDENTIFIER, TokenType.QUOTED_SYMBOL):
                if tokens.peek_token(in_sexp).kind is not TokenType.DOUBLE_COLON:
                    break
                if token.kind is TokenType.IDENTIFIER and token.value in KEYWORDS:
                    raise tokens.error(f"Keyword {token.value!r} cannot be an annotation", token.offset)
                annotations.append(symbol_from_token(token))
                tokens.next_token(in_sexp)
                token = tokens.next_token(in_sexp)

            ion_type = OPENERS.get(token.kind)
            if ion_type is not None:
                node = TextNode(ion_type, None, False, tuple(annotations), field_name, token.offset)
                field_name = None
                open_frames.append([len(nodes), False])
                nodes.append(node)
                continue

            node = self._scalar_node(token, tuple(annotations), field_name)
            field_name = None
            node.end = len(nodes) + 1
            if frame is None and not annotations and token.kind is TokenType.IDENTIFIER:
                match = VERSION_MARKER_RE.match(token.value)
                if match:
                    node.version = (int(match.group(1)), int(match.group(2)))
            nodes.append(node)
            if frame is None:
                return nodes
            frame[1] = True

    def _scalar_node(self, token: Token, annotations, field_name) -> TextNode:
        kind = token.kind
        is_null = False
        if kind is TokenType.IDENTIFIER:
            ion_type = KEYWORD_TYPES.get(token.value, IonType.SYMBOL)
            is_null = token.value == 'null'
        elif kind is TokenType.TYPED_NULL:
            ion_type = TYPE_BY_NAME[token.value]
            is_null = True
        else:
            ion_type = SCALAR_TOKENS.get(kind)
            if ion_type is None:
                raise self.tokens.error(f"Unexpected {kind.value}", token.offset)
        return TextNode(ion_type, token, is_null, annotations, field_name, token.offset)

    # -- payloads -------------------------------------------------------------

    def read_scalar(self, raw: RawValue):
        node: TextNode = raw.handle
        if node.is_null:
            return None
        token = node.token
        try:
            if node.ion_type is IonType.BOOL:
                return token.value == 'true'
            if node.ion_type is IonType.INT:
                return parse_int(token.value)
            if node.ion_type is IonType.FLOAT:
                return parse_float(token.value)
            if node.ion_type is IonType.DECIMAL:
                return parse_decimal(token.value)
            if node.ion_type is IonType.TIMESTAMP:
                return parse_timestamp(token.value)
            if node.ion_type is IonType.SYMBOL:
                return symbol_from_token(token)
            if node.ion_type is IonType.BLOB:
                return parse_blob(token.value)
            if node.ion_type in (IonType.STRING, IonType.CLOB):
                return token.value
        except MalformedInput:
            raise
        except (ValueError, ArithmeticError) as e:
            raise self.tokens.error(
                f"Invalid {node.ion_type.text_name} {token.value!r}: {e}", token.offset) from None
        raise IonUsageError(f"{node.ion_type.text_name} is not a scalar")
