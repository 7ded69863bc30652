"""
reader.py - Pull-based Ion reader

Drives a raw cursor (binary or text) and applies the stream-level rules
on top of it: version markers and local symbol tables at the top level are
consumed here and never returned, and every symbol id is resolved against
the table in effect when the value is reached.

Usage:
    reader = Reader(BinaryRawCursor(data), StreamContext('binary'))
    while reader.next() is not None:
        if reader.ion_type.is_container:
            reader.step_in()
            ...
            reader.step_out()
        else:
            print(reader.field_name, reader.read())
"""

import logging
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple

from .binary_framing import IVM_START
from .config import ReaderOptions
from .context import SUPPORTED_VERSIONS, StreamContext
from .errors import (
    IncrementalInputPending, IonUsageError, StepOutRequired, TruncatedInput,
    UnresolvedSymbol, UnsupportedVersion,
)
from .ion_types import IonType, IonValue, RawValue, SymbolToken
from .symbols import build_local_table

logger = logging.getLogger(__name__)

_UNSET = object()


def detect_encoding(data) -> str:
    """'binary' when data opens with the binary version marker byte, else 'text'."""
    if isinstance(data, str):
        return 'text'
    return 'binary' if len(data) and data[0] == IVM_START else 'text'


class DeferredCursor:
    """Stands in for the raw cursor of an incremental reader until the
    first input arrives and the encoding can be detected."""

    def __init__(self, factory: Callable[[str, object], object]):
        self._factory = factory
        self._inner = None
        self._final = False

    @property
    def encoding(self) -> Optional[str]:
        return self._inner.encoding if self._inner is not None else None

    def __getattr__(self, name):
        if self._inner is None:
            raise IonUsageError("No input has been supplied yet")
        return getattr(self._inner, name)

    @property
    def depth(self) -> int:
        return self._inner.depth if self._inner is not None else 0

    @property
    def final(self) -> bool:
        return self._inner.final if self._inner is not None else self._final

    def feed(self, data):
        if self._inner is not None:
            self._inner.feed(data)
        elif self._final:
            raise IonUsageError("Input has already been closed")
        elif len(data):
            self._inner = self._factory(detect_encoding(data), data)

    def close_input(self):
        if self._inner is not None:
            self._inner.close_input()
        self._final = True

    def release_views(self):
        if self._inner is not None:
            self._inner.release_views()

    def next_value(self) -> Optional[RawValue]:
        if self._inner is not None:
            return self._inner.next_value()
        if self._final:
            return None
        raise TruncatedInput("Waiting for input", offset=0)


class ReaderState(Enum):
    BEFORE_VALUE = 'before value'
    ON_VALUE = 'on value'
    END_OF_CONTAINER = 'end of container'
    END_OF_STREAM = 'end of stream'


class Reader:
    """Cursor over a stream of Ion values.

    next() positions on a value and reports its type without decoding it;
    read() materializes the current value (a container is read whole).
    Blob and clob views handed out with `lob_views` become invalid on the
    next call to next(), step_in(), step_out() or feed().
    """

    def __init__(self, raw, context: StreamContext, options: Optional[ReaderOptions] = None):
        self._raw = raw
        self.context = context
        self.options = options or ReaderOptions()
        if self.context.catalog is None:
            self.context.catalog = self.options.catalog
        self.state = ReaderState.BEFORE_VALUE
        self._current: Optional[RawValue] = None
        self._annotations: Tuple[SymbolToken, ...] = ()
        self._field_name: Optional[SymbolToken] = None
        self._consumed = False
        self._cached = _UNSET

    # -- position -------------------------------------------------------------

    @property
    def depth(self) -> int:
        return self._raw.depth

    @property
    def encoding(self) -> str:
        return self._raw.encoding

    @property
    def symbol_table(self):
        return self.context.symbol_table

    @property
    def ion_type(self) -> Optional[IonType]:
        return self._current.ion_type if self._current is not None else None

    @property
    def is_null(self) -> bool:
        return self._current is not None and self._current.is_null

    @property
    def annotations(self) -> Tuple[SymbolToken, ...]:
        return self._annotations

    @property
    def field_name(self) -> Optional[SymbolToken]:
        return self._field_name

    @property
    def offset(self) -> Optional[int]:
        return self._current.offset if self._current is not None else None

    # -- navigation -----------------------------------------------------------

    def next(self) -> Optional[IonType]:
        """Advance to the next value at the current depth.

        Returns its type, or None at the end of the container or stream.
        Calling next() again at the end of a container raises
        StepOutRequired. At the top level of an incremental reader,
        IncrementalInputPending means: feed more input and call again.
        """
        if self.state is ReaderState.END_OF_CONTAINER:
            raise StepOutRequired("End of container reached; call step_out()")
        if self.state is ReaderState.END_OF_STREAM:
            return None
        self._release()
        self._clear()
        self.state = ReaderState.BEFORE_VALUE
        while True:
            depth = self._raw.depth
            try:
                raw = self._raw.next_value()
            except TruncatedInput:
                if depth == 0 and not self._raw.final:
                    raise IncrementalInputPending("More input is needed to complete the next value") from None
                raise
            if raw is None:
                self.state = ReaderState.END_OF_CONTAINER if depth else ReaderState.END_OF_STREAM
                return None
            if depth == 0:
                if raw.is_version_marker:
                    self._version_marker(raw)
                    continue
                if self._is_local_table(raw):
                    self._local_table(raw)
                    continue
            self._position(raw)
            return raw.ion_type

    def step_in(self):
        """Enter the current container; the reader is then before its first child."""
        current = self._current
        if self.state is not ReaderState.ON_VALUE or current is None or not current.ion_type.is_container:
            raise IonUsageError("step_in() requires the reader to be on a container")
        if current.is_null:
            raise IonUsageError(f"Cannot step into null.{current.ion_type.text_name}")
        if self._consumed:
            raise IonUsageError("Container was already read; step_in() is no longer possible")
        self._release()
        self._raw.step_in()
        self._clear()
        self.state = ReaderState.BEFORE_VALUE

    def step_out(self):
        """Leave the current container, skipping any children not yet visited."""
        if self._raw.depth == 0:
            raise IonUsageError("step_out() at the top level")
        self._release()
        self._raw.step_out()
        self._clear()
        self.state = ReaderState.BEFORE_VALUE

    def read(self) -> IonValue:
        """Materialize the current value, including its annotations."""
        if self.state is not ReaderState.ON_VALUE:
            raise IonUsageError("read() requires the reader to be on a value")
        if self._cached is not _UNSET:
            return self._cached
        raw = self._current
        if raw.ion_type.is_container and not raw.is_null:
            self._consumed = True
            value = self._materialize(raw, self._annotations)
        else:
            value = IonValue(raw.ion_type, self._scalar(raw), self._annotations)
        self._cached = value
        return value

    def __iter__(self) -> Iterator[IonValue]:
        """Read every remaining value at the current depth."""
        while self.next() is not None:
            yield self.read()

    # -- input ----------------------------------------------------------------

    def feed(self, data):
        self._release()
        self._raw.feed(data)

    def close_input(self):
        self._raw.close_input()

    def close(self):
        self._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # -- internals ------------------------------------------------------------

    def _release(self):
        self._raw.release_views()

    def _clear(self):
        self._current = None
        self._annotations = ()
        self._field_name = None
        self._consumed = False
        self._cached = _UNSET

    def _position(self, raw: RawValue):
        self._current = raw
        self._annotations = tuple(self._resolve(a) for a in raw.annotations)
        self._field_name = self._resolve(raw.field_name) if raw.field_name is not None else None
        self.state = ReaderState.ON_VALUE

    def _resolve(self, token: SymbolToken) -> SymbolToken:
        if token.text is not None or token.sid == 0:
            return token
        try:
            return self.context.symbol_table.resolve(token.sid)
        except UnresolvedSymbol:
            if self.options.strict_symbols:
                raise
            logger.debug("Symbol id $%d has no text in the current table", token.sid)
            return token

    def _scalar(self, raw: RawValue):
        value = self._raw.read_scalar(raw)
        if raw.ion_type is IonType.SYMBOL and value is not None:
            value = self._resolve(value)
        return value

    def _materialize(self, raw: RawValue, annotations: Tuple[SymbolToken, ...]) -> IonValue:
        """Read a whole container with an explicit stack of open containers."""
        root = IonValue(raw.ion_type, [], annotations)
        stack: List[IonValue] = [root]
        depth = self._raw.depth
        self._raw.step_in()
        try:
            while stack:
                child = self._raw.next_value()
                if child is None:
                    self._raw.step_out()
                    stack.pop()
                    continue
                child_annotations = tuple(self._resolve(a) for a in child.annotations)
                if child.ion_type.is_container and not child.is_null:
                    value = IonValue(child.ion_type, [], child_annotations)
                else:
                    value = IonValue(child.ion_type, self._scalar(child), child_annotations)
                parent = stack[-1]
                if parent.ion_type is IonType.STRUCT:
                    parent.value.append((self._resolve(child.field_name), value))
                else:
                    parent.value.append(value)
                if value.ion_type.is_container and not value.is_null:
                    self._raw.step_in()
                    stack.append(value)
        except Exception:
            # unwind to the container's own depth; the cursor ends up after it
            while self._raw.depth > depth:
                self._raw.step_out()
            raise
        return root

    def _version_marker(self, raw: RawValue):
        if raw.version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(raw.version, raw.offset)
        logger.debug("Version marker %d.%d at offset %d", raw.version[0], raw.version[1], raw.offset)
        self.context.reset(raw.version)

    def _is_local_table(self, raw: RawValue) -> bool:
        if raw.ion_type is not IonType.STRUCT or not raw.annotations:
            return False
        return self._resolve(raw.annotations[0]).text == '$ion_symbol_table'

    def _local_table(self, raw: RawValue):
        annotations = tuple(self._resolve(a) for a in raw.annotations)
        if raw.is_null:
            declaration = IonValue(IonType.STRUCT, None, annotations)
        else:
            declaration = self._materialize(raw, annotations)
        table = build_local_table(self.context.symbol_table, declaration, self.context.catalog)
        self.context.replace_table(table)
