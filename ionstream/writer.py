"""
writer.py - Push-based Ion writers

A writer accepts values one at a time (write_value), or builds containers
incrementally with step_in/step_out. Annotations and a struct field name
are set before the value they apply to.

The binary writer interns symbols as values are written and holds the
encoded top-level values until flush() or finalize(), because the local
symbol table they depend on has to be written ahead of them. Each flush
writes the version marker (first flush of a segment), the symbol table
declaration and then the values.

    policy "append": later flushes declare only the new symbols, appended
                     to the table in effect (imports: $ion_symbol_table)
    policy "reset":  every flush is a new segment with a fresh table

Usage:
    writer = BinaryWriter()
    writer.set_annotations('reading')
    writer.step_in(IonType.STRUCT)
    writer.set_field_name('temperature')
    writer.write_value(21.5)
    writer.step_out()
    writer.finalize()
    data = writer.getvalue()
"""

import io
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from .binary_framing import IVM, BinaryEncoder
from .config import WriterOptions
from .context import StreamContext
from .errors import IncompleteStream, IonTypeError, IonUsageError, UnresolvedSymbol
from .ion_types import IonType, IonValue, SymbolLike, SymbolToken, as_symbol, ion_value
from .symbols import Catalog, SymbolTable, local_table_declaration
from .text_formatter import TextFormatter

logger = logging.getLogger(__name__)

_SYSTEM_TABLE = SymbolTable()


class Writer:
    """State shared by the binary and text writers."""

    encoding: Optional[str] = None

    def __init__(self, context: StreamContext, options: Optional[WriterOptions] = None, sink=None):
        self.context = context
        self.options = options or WriterOptions()
        self.sink = sink
        self._annotations: Tuple[SymbolToken, ...] = ()
        self._field_name: Optional[SymbolToken] = None
        self._started = False
        self.finalized = False

    @property
    def depth(self) -> int:
        return self.context.depth

    @property
    def symbol_table(self) -> SymbolTable:
        return self.context.symbol_table

    # -- value position -------------------------------------------------------

    def set_annotations(self, *annotations: SymbolLike):
        """Annotations for the next value (or container) written."""
        self._annotations = tuple(as_symbol(a) for a in annotations)

    def set_field_name(self, name: SymbolLike):
        """Field name for the next value written inside a struct."""
        self._field_name = as_symbol(name)

    def _take_position(self) -> Tuple[Tuple[SymbolToken, ...], Optional[SymbolToken]]:
        if self.finalized:
            raise IonUsageError("Writer has been finalized")
        annotations, field_name = self._annotations, self._field_name
        self._annotations = ()
        self._field_name = None
        frames = self.context.frames
        in_struct = bool(frames) and frames[-1].ion_type is IonType.STRUCT
        if in_struct and field_name is None:
            raise IonUsageError("Values inside a struct need a field name")
        if not in_struct and field_name is not None:
            raise IonUsageError("A field name can only be set inside a struct")
        return annotations, field_name

    # -- writing --------------------------------------------------------------

    def step_in(self, ion_type: IonType):
        """Open a list, sexp or struct."""
        if not isinstance(ion_type, IonType) or not ion_type.is_container:
            raise IonTypeError(f"step_in() needs a container type, got {ion_type!r}")
        annotations, field_name = self._take_position()
        self._begin(ion_type, annotations, field_name)

    def step_out(self):
        """Close the innermost open container."""
        if not self.depth:
            raise IonUsageError("step_out() at the top level")
        if self._annotations or self._field_name is not None:
            raise IonUsageError("Annotations or a field name were set but no value was written")
        self._end()

    def write_value(self, value, annotations: Sequence[SymbolLike] = ()):
        """Write an IonValue or native Python data (converted with ion_value)."""
        if not isinstance(value, IonValue):
            value = ion_value(value)
        pending, field_name = self._take_position()
        if pending or annotations:
            combined = pending + tuple(as_symbol(a) for a in annotations) + value.annotations
            value = IonValue(value.ion_type, value.value, combined)
        self._value(value, field_name)

    def write_values(self, values: Iterable):
        for value in values:
            self.write_value(value)

    def write_null(self, ion_type: IonType = IonType.NULL):
        self.write_value(IonValue(ion_type))

    def write_symbol(self, symbol: SymbolLike):
        self.write_value(IonValue(IonType.SYMBOL, as_symbol(symbol)))

    # -- output ---------------------------------------------------------------

    def flush(self):
        """Write out every completed top-level value."""
        if self.depth:
            raise IonUsageError("flush() requires all containers to be closed")
        self._flush(final=False)

    def finalize(self):
        """Flush and close the stream; open containers are an IncompleteStream."""
        if self.finalized:
            return
        if self.depth:
            raise IncompleteStream(f"{self.depth} container(s) still open at finalize()")
        self._flush(final=True)
        self.finalized = True
        logger.debug("%s writer finalized", self.encoding)

    def getvalue(self):
        """Everything written so far, when no sink was given."""
        if self.sink is not None:
            raise IonUsageError("Output was written to the sink")
        return self._collected()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.finalize()
        return False

    # -- encoding hooks -------------------------------------------------------

    def _begin(self, ion_type: IonType, annotations, field_name):
        raise NotImplementedError

    def _end(self):
        raise NotImplementedError

    def _value(self, value: IonValue, field_name: Optional[SymbolToken]):
        raise NotImplementedError

    def _flush(self, final: bool):
        raise NotImplementedError

    def _collected(self):
        raise NotImplementedError


class BinaryWriter(Writer):
    encoding = 'binary'

    def __init__(self, sink=None, options: Optional[WriterOptions] = None,
                 imports: Sequence = (), catalog: Optional[Catalog] = None):
        self._imports = tuple(imports)
        self._catalog = catalog
        context = StreamContext('binary', catalog=catalog, symbol_table=self._fresh_table())
        super().__init__(context, options, sink)
        self._encoder = BinaryEncoder(frames=context.frames, compact_floats=self.options.compact_floats)
        self._output = bytearray()
        self._segment_open = False
        self._declared = 0

    def _fresh_table(self) -> SymbolTable:
        return SymbolTable(self._imports, catalog=self._catalog)

    def _symbol_id(self, symbol: SymbolToken) -> int:
        table = self.context.symbol_table
        if symbol.text is None:
            if symbol.sid > table.max_id:
                raise UnresolvedSymbol(symbol.sid, table.max_id)
            return symbol.sid
        return table.intern(symbol.text)

    def _begin(self, ion_type, annotations, field_name):
        field_sid = self._symbol_id(field_name) if field_name is not None else None
        self._encoder.begin_container(ion_type, [self._symbol_id(a) for a in annotations], field_sid)

    def _end(self):
        self._encoder.end_container()

    def _value(self, value, field_name):
        field_sid = self._symbol_id(field_name) if field_name is not None else None
        depth = self.depth
        try:
            self._encoder.encode_value(value, self._symbol_id, field_sid)
        except Exception:
            del self.context.frames[depth:]
            raise

    def _declaration(self, since: Optional[int] = None) -> bytes:
        encoder = BinaryEncoder()
        declaration = local_table_declaration(self.context.symbol_table, since)
        encoder.encode_value(declaration, lambda symbol: _SYSTEM_TABLE.get_id(symbol.text))
        return encoder.take()

    def _flush(self, final: bool):
        values = self._encoder.take()
        if not values and (self._started or not final):
            return
        table = self.context.symbol_table
        out = bytearray()
        if not self._segment_open:
            out += IVM
            if table.imports or table.local_symbols:
                out += self._declaration()
            self._segment_open = True
        elif len(table.local_symbols) > self._declared:
            out += self._declaration(since=self._declared)
        self._declared = len(table.local_symbols)
        out += values
        self._emit(bytes(out))
        logger.debug("Flushed %d bytes (%d local symbols declared)", len(out), self._declared)

        if self.options.symbol_table_policy == 'reset':
            self.context.replace_table(self._fresh_table())
            self._segment_open = False
            self._declared = 0

    def _emit(self, data: bytes):
        self._started = True
        if self.sink is not None:
            self.sink.write(data)
        else:
            self._output += data

    def _collected(self) -> bytes:
        return bytes(self._output)


class TextWriter(Writer):
    """Writes Ion text. Symbols are written by text, so no table is needed
    unless imports are given; their declaration then opens the stream."""

    encoding = 'text'

    def __init__(self, sink=None, options: Optional[WriterOptions] = None,
                 imports: Sequence = (), catalog: Optional[Catalog] = None):
        table = SymbolTable(imports, catalog=catalog)
        context = StreamContext('text', catalog=catalog, symbol_table=table)
        super().__init__(context, options, sink)
        self._formatter = TextFormatter(self.options.pretty, self.options.indent, frames=context.frames)
        self._chunks: List[str] = []
        if self.options.text_version_marker:
            self._formatter.write_version_marker()
        if table.imports:
            self._formatter.encode_value(local_table_declaration(table))

    def _begin(self, ion_type, annotations, field_name):
        self._formatter.begin_container(ion_type, annotations, field_name)

    def _end(self):
        self._formatter.end_container()

    def _value(self, value, field_name):
        depth = self.depth
        parent = self.context.frames[-1] if depth else None
        children = parent.start if parent is not None else None
        mark = self._formatter.mark()
        try:
            self._formatter.encode_value(value, field_name)
        except Exception:
            del self.context.frames[depth:]
            if parent is not None:
                parent.start = children
            self._formatter.rewind(mark)
            raise

    def _flush(self, final: bool):
        text = self._formatter.take()
        if final and self.options.pretty and (text or self._started):
            text += '\n'
        if text:
            self._emit(text)

    def _emit(self, text: str):
        self._started = True
        if self.sink is None:
            self._chunks.append(text)
        elif isinstance(self.sink, io.TextIOBase):
            self.sink.write(text)
        else:
            self.sink.write(text.encode('utf-8'))

    def _collected(self) -> str:
        return ''.join(self._chunks)
