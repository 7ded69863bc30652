"""
ionstream - Streaming reader and writer for Amazon Ion 1.0

Reads and writes the binary and text encodings of Ion through one cursor
API, resolving symbols against system, shared and local symbol tables.

Usage:
    from ionstream import loads, dumps, open_reader, open_writer

    data = dumps([{'a': 1, 'b': [True, None]}])          # binary
    values = loads(data)
    text = dumps(values, encoding='text')                # '{a:1,b:[true,null]}'

    reader = open_reader(b'', incremental=True)
    reader.feed(chunk)
    try:
        reader.next()
    except IncrementalInputPending:
        ...                                              # feed more, retry
"""

from typing import Iterable, List, Optional, Sequence

from .binary_cursor import BinaryRawCursor
from .config import ReaderOptions, WriterOptions, load_options
from .context import StreamContext
from .errors import (
    IncompleteStream, IncrementalInputPending, IonError, IonTypeError, IonUsageError,
    MalformedInput, StepOutRequired, TruncatedInput, UnresolvedSymbol, UnsupportedVersion,
)
from .ion_types import (
    IonType, IonValue, SymbolToken, Timestamp, TimestampPrecision, ion_value,
)
from .reader import DeferredCursor, Reader, ReaderState, detect_encoding
from .symbols import Catalog, ImportDescriptor, SharedSymbolTable, SymbolTable
from .text_cursor import TextRawCursor
from .writer import BinaryWriter, TextWriter, Writer

__version__ = '0.1.0'

ENCODINGS = ('binary', 'text')


def _raw_cursor(encoding: str, data, incremental: bool, options: ReaderOptions, context: StreamContext):
    context.encoding = encoding
    if encoding == 'binary':
        if isinstance(data, str):
            raise TypeError("Binary Ion input must be bytes")
        return BinaryRawCursor(data, incremental, options.lob_views, frames=context.frames)
    return TextRawCursor(data, incremental, frames=context.frames)


def open_reader(data=None, *, incremental: bool = False, encoding: Optional[str] = None,
                options: Optional[ReaderOptions] = None) -> Reader:
    """Open a reader over bytes, str or a readable stream.

    The encoding is detected from the first byte unless given. An
    incremental reader takes further input through feed() and reports
    IncrementalInputPending until close_input() is called.
    """
    if encoding is not None and encoding not in ENCODINGS:
        raise ValueError(f"Unknown encoding {encoding!r} (expected one of {', '.join(ENCODINGS)})")
    options = options or ReaderOptions()
    if hasattr(data, 'read'):
        data = data.read()
    if data is None:
        data = b''
    context = StreamContext(catalog=options.catalog)

    def factory(detected, initial):
        return _raw_cursor(detected, initial, incremental, options, context)

    if incremental and encoding is None and not len(data):
        raw = DeferredCursor(factory)
    else:
        raw = factory(encoding or detect_encoding(data), data)
    return Reader(raw, context, options)


def open_writer(sink=None, encoding: str = 'binary', imports: Sequence = (),
                options: Optional[WriterOptions] = None,
                catalog: Optional[Catalog] = None) -> Writer:
    """Open a writer. Without a sink, output is collected for getvalue().

    `imports` are ImportDescriptor or SharedSymbolTable entries occupying
    symbol ids after the system table; descriptors are resolved in
    `catalog`.
    """
    if encoding == 'binary':
        return BinaryWriter(sink, options, imports, catalog)
    if encoding == 'text':
        return TextWriter(sink, options, imports, catalog)
    raise ValueError(f"Unknown encoding {encoding!r} (expected one of {', '.join(ENCODINGS)})")


def loads(data, options: Optional[ReaderOptions] = None) -> List[IonValue]:
    """Read every top-level value of a complete stream."""
    with open_reader(data, options=options) as reader:
        return list(reader)


def dumps(values: Iterable, encoding: str = 'binary', imports: Sequence = (),
          options: Optional[WriterOptions] = None, catalog: Optional[Catalog] = None):
    """Write a sequence of top-level values; returns bytes (binary) or str (text)."""
    if isinstance(values, IonValue):
        values = [values]
    with open_writer(None, encoding, imports, options, catalog) as writer:
        writer.write_values(values)
    return writer.getvalue()


__all__ = [
    'open_reader', 'open_writer', 'loads', 'dumps', 'load_options', 'ion_value',
    'Reader', 'ReaderState', 'Writer', 'BinaryWriter', 'TextWriter',
    'ReaderOptions', 'WriterOptions',
    'IonType', 'IonValue', 'SymbolToken', 'Timestamp', 'TimestampPrecision',
    'Catalog', 'ImportDescriptor', 'SharedSymbolTable', 'SymbolTable',
    'IonError', 'MalformedInput', 'TruncatedInput', 'UnresolvedSymbol', 'UnsupportedVersion',
    'IonUsageError', 'StepOutRequired', 'IncompleteStream', 'IonTypeError',
    'IncrementalInputPending',
]
