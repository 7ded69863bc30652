"""
binary_cursor.py - Lazy cursor over Ion binary data

Positions on one value at a time, exposing its header, annotation sids and
field sid without decoding the payload. Skipping a value (or the rest of a
container) is a jump to the end of its declared byte range.

Top-level values are only returned once their last byte is present; until
then TruncatedInput is raised with the cursor left where it was, so the
caller can append input and retry. Consumed top-level bytes are dropped
from the buffer in incremental mode.
"""

from typing import List, Optional

from .binary_framing import (
    IVM_END, IVM_START, TypeCode, BinaryHeader, parse_annotations, parse_header,
)
from .context import ContainerFrame
from .errors import IonUsageError, MalformedInput, TruncatedInput
from .ion_types import IonType, RawValue, SymbolToken
from .primitives import (
    decode_decimal, decode_float, decode_timestamp, decode_uint, decode_utf8,
    decode_varuint,
)

COMPACT_THRESHOLD = 64 * 1024


class BinaryRawCursor:
    """Cursor over Ion binary bytes. Symbols are reported as bare sids."""

    encoding = 'binary'

    def __init__(self, data=b'', incremental: bool = False, lob_views: bool = False,
                 frames: Optional[List[ContainerFrame]] = None):
        if incremental:
            self._buf = bytearray(data)
        elif isinstance(data, (bytes, bytearray)):
            self._buf = data
        else:
            self._buf = bytes(data)
        self.incremental = incremental
        self.final = not incremental
        self.lob_views = lob_views
        self.frames = frames if frames is not None else []
        self._pos = 0
        self._base = 0
        self._current: Optional[BinaryHeader] = None
        self._views: List[memoryview] = []

    @property
    def depth(self) -> int:
        return len(self.frames)

    @property
    def position(self) -> int:
        """Absolute offset of the next unread byte."""
        return self._base + self._pos

    # -- input ----------------------------------------------------------------

    def feed(self, data):
        if not self.incremental:
            raise IonUsageError("feed() needs an incremental reader")
        if self.final:
            raise IonUsageError("Input has already been closed")
        self.release_views()
        self._buf += data

    def close_input(self):
        self.final = True

    def _compact(self):
        if not self.incremental or self._views or not self._pos:
            return
        if self._pos >= COMPACT_THRESHOLD or self._pos == len(self._buf):
            del self._buf[:self._pos]
            self._base += self._pos
            self._pos = 0

    def _relocated(self, error: MalformedInput) -> MalformedInput:
        if not self._base or error.offset is None:
            return error
        return type(error)(error.reason, offset=error.offset + self._base)

    # -- navigation -----------------------------------------------------------

    def next_value(self) -> Optional[RawValue]:
        """Advance to the next sibling; None at the end of the container or stream."""
        self._current = None
        try:
            return self._next_value()
        except MalformedInput as e:
            relocated = self._relocated(e)
            if relocated is e:
                raise
            raise relocated from None

    def _next_value(self) -> Optional[RawValue]:
        buf = self._buf
        while True:
            top_level = not self.frames
            if top_level:
                self._compact()
                buf = self._buf
                limit = len(buf)
                if self._pos >= limit:
                    if self.final:
                        return None
                    raise TruncatedInput("Waiting for more input", offset=self._pos)
                if buf[self._pos] == IVM_START:
                    marker = self._version_marker()
                    if marker is not None:
                        return marker
            else:
                frame = self.frames[-1]
                limit = frame.end
                if self._pos >= limit:
                    return None

            start = self._pos
            pos = start
            field_name = None
            if not top_level and self.frames[-1].ion_type is IonType.STRUCT:
                sid, pos = decode_varuint(buf, pos, limit)
                field_name = SymbolToken(None, sid)
            header, end = parse_header(buf, pos, limit, top_level=top_level)
            self._pos = end
            if header is None:
                continue

            annotations = ()
            if header.type_code == TypeCode.ANNOTATION:
                header, sids = self._unwrap(header)
                annotations = tuple(SymbolToken(None, sid) for sid in sids)
            self._current = header
            return RawValue(header.ion_type, header.is_null, annotations, field_name,
                            offset=self._base + start, handle=header)

    def _version_marker(self) -> Optional[RawValue]:
        buf, pos = self._buf, self._pos
        if pos + 4 > len(buf):
            if self.final:
                raise MalformedInput("Truncated version marker", offset=pos)
            raise TruncatedInput("Version marker is incomplete", offset=pos)
        if buf[pos + 3] != IVM_END:
            raise MalformedInput(
                f"Invalid version marker {bytes(buf[pos:pos + 4]).hex()}", offset=pos)
        self._pos = pos + 4
        return RawValue(None, offset=self._base + pos, version=(buf[pos + 1], buf[pos + 2]))

    def _unwrap(self, wrapper: BinaryHeader):
        buf = self._buf
        try:
            sids, pos = parse_annotations(buf, wrapper.body_start, wrapper.end)
            header, end = parse_header(buf, pos, wrapper.end)
        except TruncatedInput as e:
            raise MalformedInput(e.reason, offset=e.offset) from None
        if header is None:
            raise MalformedInput("Annotation wrapper holds NOP padding", offset=pos)
        if header.type_code == TypeCode.ANNOTATION:
            raise MalformedInput("Annotation wrapper holds another wrapper", offset=pos)
        if end != wrapper.end:
            raise MalformedInput("Annotation wrapper length does not match its value", offset=pos)
        return header, sids

    def step_in(self):
        header = self._current
        if header is None or not header.ion_type.is_container or header.is_null:
            raise IonUsageError("step_in() requires a non-null container")
        self.frames.append(ContainerFrame(header.ion_type, end=header.end, start=header.body_start))
        self._pos = header.body_start
        self._current = None

    def step_out(self):
        if not self.frames:
            raise IonUsageError("step_out() at the top level")
        frame = self.frames.pop()
        self._pos = frame.end
        self._current = None

    # -- payloads -------------------------------------------------------------

    def read_scalar(self, raw: RawValue):
        """Decode the payload of a scalar positioned by next_value()."""
        try:
            return self._read_scalar(raw)
        except MalformedInput as e:
            relocated = self._relocated(e)
            if relocated is e:
                raise
            raise relocated from None

    def _read_scalar(self, raw: RawValue):
        header: BinaryHeader = raw.handle
        if header.is_null:
            return None
        buf, start, end = self._buf, header.body_start, header.end
        type_code = header.type_code
        if type_code == TypeCode.BOOL:
            return header.length_code == 1
        if type_code == TypeCode.POS_INT:
            return decode_uint(buf, start, end)
        if type_code == TypeCode.NEG_INT:
            magnitude = decode_uint(buf, start, end)
            if magnitude == 0:
                raise MalformedInput("Negative int with zero magnitude", offset=start - 1)
            return -magnitude
        if type_code == TypeCode.FLOAT:
            return decode_float(buf, start, end)
        if type_code == TypeCode.DECIMAL:
            return decode_decimal(buf, start, end)
        if type_code == TypeCode.TIMESTAMP:
            return decode_timestamp(buf, start, end)
        if type_code == TypeCode.SYMBOL:
            return SymbolToken(None, decode_uint(buf, start, end))
        if type_code == TypeCode.STRING:
            return decode_utf8(buf, start, end)
        if type_code in (TypeCode.CLOB, TypeCode.BLOB):
            return self._lob(start, end)
        raise IonUsageError(f"{raw.ion_type.text_name} is not a scalar")

    def _lob(self, start: int, end: int):
        if not self.lob_views:
            return bytes(self._buf[start:end])
        base = memoryview(self._buf)
        view = base[start:end]
        self._views.append(base)
        self._views.append(view)
        return view

    def release_views(self):
        """Invalidate every lob view handed out since the last call."""
        while self._views:
            self._views.pop().release()
