"""
binary_framing.py - Ion 1.0 binary value framing

Every value starts with a one-byte type descriptor:

    ┌──────────┬──────────┐
    │ T (4 bit)│ L (4 bit)│
    └──────────┴──────────┘

    T = type code (see TypeCode)
    L = 0-13  payload length in bytes
        14    payload length follows as a VarUInt
        15    null of type T
    bool stores its value in L; a struct with L=1 has a VarUInt length.

Annotated values are wrapped: E{L} [length] VarUInt(annot_length)
VarUInt(sid)... value. At the top level, E0 01 00 EA is the Ion 1.0
version marker.

Usage:
    from ionstream.binary_framing import BinaryEncoder, parse_header

    encoder = BinaryEncoder()
    encoder.begin_container(IonType.LIST)
    encoder.write_scalar(IonType.INT, 5)
    encoder.end_container()
    data = encoder.take()        # b'\\xb2\\x21\\x05'
"""

from enum import IntEnum
from typing import Callable, List, Optional, Sequence, Tuple

from .context import ContainerFrame
from .errors import IonTypeError, IonUsageError, MalformedInput, TruncatedInput
from .ion_types import IonType, IonValue, SymbolToken
from .primitives import (
    decode_varuint, encode_decimal, encode_float, encode_timestamp,
    encode_uint, encode_varuint,
)


# =============================================================================
# Constants
# =============================================================================

class TypeCode(IntEnum):
    """Type descriptor high nibble."""
    NULL = 0x0
    BOOL = 0x1
    POS_INT = 0x2
    NEG_INT = 0x3
    FLOAT = 0x4
    DECIMAL = 0x5
    TIMESTAMP = 0x6
    SYMBOL = 0x7
    STRING = 0x8
    CLOB = 0x9
    BLOB = 0xA
    LIST = 0xB
    SEXP = 0xC
    STRUCT = 0xD
    ANNOTATION = 0xE
    RESERVED = 0xF


LENGTH_VARUINT = 0xE
LENGTH_NULL = 0xF

IVM = b'\xE0\x01\x00\xEA'
IVM_START = 0xE0
IVM_END = 0xEA

TYPE_CODE_TO_ION_TYPE = {
    TypeCode.NULL: IonType.NULL,
    TypeCode.BOOL: IonType.BOOL,
    TypeCode.POS_INT: IonType.INT,
    TypeCode.NEG_INT: IonType.INT,
    TypeCode.FLOAT: IonType.FLOAT,
    TypeCode.DECIMAL: IonType.DECIMAL,
    TypeCode.TIMESTAMP: IonType.TIMESTAMP,
    TypeCode.SYMBOL: IonType.SYMBOL,
    TypeCode.STRING: IonType.STRING,
    TypeCode.CLOB: IonType.CLOB,
    TypeCode.BLOB: IonType.BLOB,
    TypeCode.LIST: IonType.LIST,
    TypeCode.SEXP: IonType.SEXP,
    TypeCode.STRUCT: IonType.STRUCT,
}


# =============================================================================
# Decoding
# =============================================================================

class BinaryHeader:
    """Decoded type descriptor and the byte range of the payload."""
    __slots__ = ('type_code', 'length_code', 'body_start', 'end')

    def __init__(self, type_code: int, length_code: int, body_start: int, end: int):
        self.type_code = TypeCode(type_code)
        self.length_code = length_code
        self.body_start = body_start
        self.end = end

    @property
    def ion_type(self) -> IonType:
        return TYPE_CODE_TO_ION_TYPE[self.type_code]

    @property
    def is_null(self) -> bool:
        return self.length_code == LENGTH_NULL

    def __repr__(self):
        return (f"BinaryHeader({self.type_code.name}, L={self.length_code}, "
                f"body={self.body_start}, end={self.end})")


def parse_header(buf, pos: int, limit: int,
                 top_level: bool = False) -> Tuple[Optional[BinaryHeader], int]:
    """Parse the type descriptor (and length) at pos.

    Returns (header, end). header is None for NOP padding, in which case
    `end` is where the padding stops. A payload running past `limit` is
    TruncatedInput at the top level (the buffer may still grow) and
    MalformedInput inside a container.
    """
    overrun = TruncatedInput if top_level else MalformedInput
    if pos >= limit:
        raise overrun("Expected a type descriptor", offset=pos)
    descriptor = buf[pos]
    type_code = descriptor >> 4
    length_code = descriptor & 0x0F
    body = pos + 1

    if type_code == TypeCode.RESERVED:
        raise MalformedInput(f"Reserved type descriptor 0x{descriptor:02X}", offset=pos)
    if length_code == LENGTH_NULL:
        if type_code == TypeCode.ANNOTATION:
            raise MalformedInput("Annotation wrapper cannot be null", offset=pos)
        return BinaryHeader(type_code, length_code, body, body), body
    if type_code == TypeCode.BOOL:
        if length_code > 1:
            raise MalformedInput(f"Invalid bool descriptor 0x{descriptor:02X}", offset=pos)
        return BinaryHeader(type_code, length_code, body, body), body

    if type_code == TypeCode.STRUCT and length_code == 1:
        length, body = decode_varuint(buf, body, limit)
        if length == 0:
            raise MalformedInput("Sorted struct must not be empty", offset=pos)
    elif length_code == LENGTH_VARUINT:
        length, body = decode_varuint(buf, body, limit)
    else:
        length = length_code

    end = body + length
    if end > limit:
        name = TypeCode(type_code).name.lower()
        raise overrun(f"{name} length {length} runs past the enclosing bound", offset=pos)
    if type_code == TypeCode.FLOAT and length not in (0, 4, 8):
        raise MalformedInput(f"Invalid float length {length}", offset=pos)
    if type_code == TypeCode.ANNOTATION and length < 3:
        raise MalformedInput(f"Annotation wrapper length {length} is too short", offset=pos)
    if type_code == TypeCode.NULL:
        return None, end
    return BinaryHeader(type_code, length_code, body, end), end


def parse_annotations(buf, pos: int, end: int) -> Tuple[List[int], int]:
    """Parse the annotation sid list of a wrapper whose payload starts at pos."""
    annot_length, pos = decode_varuint(buf, pos, end)
    if annot_length == 0:
        raise MalformedInput("Annotation wrapper declares no annotations", offset=pos)
    annot_end = pos + annot_length
    if annot_end >= end:
        raise MalformedInput("Annotation list leaves no room for a value", offset=pos)
    sids = []
    while pos < annot_end:
        sid, pos = decode_varuint(buf, pos, annot_end)
        sids.append(sid)
    return sids, pos


# =============================================================================
# Encoding
# =============================================================================

def encode_type_descriptor(type_code: int, length: int) -> bytes:
    if length < LENGTH_VARUINT:
        return bytes([(type_code << 4) | length])
    return bytes([(type_code << 4) | LENGTH_VARUINT]) + encode_varuint(length)


def encode_null(ion_type: IonType) -> bytes:
    return bytes([(ion_type.value << 4) | LENGTH_NULL])


def encode_scalar(ion_type: IonType, value, compact_floats: bool = True) -> bytes:
    """Complete encoding of a non-null scalar. Symbols take their sid as value."""
    try:
        if ion_type is IonType.NULL:
            return encode_null(IonType.NULL)
        if ion_type is IonType.BOOL:
            if not isinstance(value, bool):
                raise IonTypeError(f"bool value expected, got {type(value).__name__}")
            return bytes([(TypeCode.BOOL << 4) | int(value)])
        if ion_type is IonType.INT:
            if value >= 0:
                return _with_length(TypeCode.POS_INT, encode_uint(value))
            return _with_length(TypeCode.NEG_INT, encode_uint(-value))
        if ion_type is IonType.FLOAT:
            return _with_length(TypeCode.FLOAT, encode_float(float(value), compact_floats))
        if ion_type is IonType.DECIMAL:
            return _with_length(TypeCode.DECIMAL, encode_decimal(value))
        if ion_type is IonType.TIMESTAMP:
            return _with_length(TypeCode.TIMESTAMP, encode_timestamp(value))
        if ion_type is IonType.SYMBOL:
            return _with_length(TypeCode.SYMBOL, encode_uint(value))
        if ion_type is IonType.STRING:
            return _with_length(TypeCode.STRING, value.encode('utf-8'))
        if ion_type in (IonType.CLOB, IonType.BLOB):
            return _with_length(ion_type.value, bytes(value))
    except (AttributeError, TypeError, UnicodeEncodeError) as e:
        raise IonTypeError(f"Cannot encode {type(value).__name__} as {ion_type.text_name}: {e}")
    raise IonTypeError(f"{ion_type.text_name} is not a scalar type")


def _with_length(type_code: int, body: bytes) -> bytes:
    return encode_type_descriptor(type_code, len(body)) + body


def wrap_annotations(annotation_sids: Sequence[int], value: bytes) -> bytes:
    if not annotation_sids:
        return value
    sids = b''.join(encode_varuint(sid) for sid in annotation_sids)
    inner = encode_varuint(len(sids)) + sids + value
    return encode_type_descriptor(TypeCode.ANNOTATION, len(inner)) + inner


class BinaryEncoder:
    """Builds length-prefixed binary values, buffering open containers.

    Container payloads are collected per frame; their length prefix is
    known only when the container is closed.
    """

    def __init__(self, frames: Optional[List[ContainerFrame]] = None, compact_floats: bool = True):
        self.frames = frames if frames is not None else []
        self.compact_floats = compact_floats
        self._out = bytearray()

    @property
    def depth(self) -> int:
        return len(self.frames)

    def _emit(self, data: bytes, field_sid: Optional[int]):
        if not self.frames:
            self._out += data
            return
        frame = self.frames[-1]
        if frame.ion_type is IonType.STRUCT:
            if field_sid is None:
                raise IonUsageError("Values inside a struct need a field name")
            frame.buffer += encode_varuint(field_sid)
        frame.buffer += data

    def write_null(self, ion_type: IonType = IonType.NULL, annotation_sids: Sequence[int] = (),
                   field_sid: Optional[int] = None):
        self._emit(wrap_annotations(annotation_sids, encode_null(ion_type)), field_sid)

    def write_scalar(self, ion_type: IonType, value, annotation_sids: Sequence[int] = (),
                     field_sid: Optional[int] = None):
        if value is None:
            encoded = encode_null(ion_type)
        else:
            encoded = encode_scalar(ion_type, value, self.compact_floats)
        self._emit(wrap_annotations(annotation_sids, encoded), field_sid)

    def begin_container(self, ion_type: IonType, annotation_sids: Sequence[int] = (),
                        field_sid: Optional[int] = None):
        if not ion_type.is_container:
            raise IonTypeError(f"{ion_type.text_name} is not a container type")
        self.frames.append(ContainerFrame(ion_type, field_name=field_sid,
                                          annotations=tuple(annotation_sids), buffer=bytearray()))

    def end_container(self):
        if not self.frames:
            raise IonUsageError("No open container to end")
        frame = self.frames.pop()
        encoded = encode_type_descriptor(frame.ion_type.value, len(frame.buffer)) + frame.buffer
        self._emit(wrap_annotations(frame.annotations, encoded), frame.field_name)

    def encode_value(self, value: IonValue, symbol_id: Callable[[SymbolToken], int],
                     field_sid: Optional[int] = None):
        """Encode a complete IonValue; symbol_id maps a SymbolToken to its sid."""
        stack = [iter([(field_sid, value)])]
        while stack:
            try:
                sid, item = next(stack[-1])
            except StopIteration:
                stack.pop()
                if stack:
                    self.end_container()
                continue
            annotation_sids = [symbol_id(a) for a in item.annotations]
            if item.is_null:
                self.write_null(item.ion_type, annotation_sids, sid)
            elif item.ion_type.is_container:
                self.begin_container(item.ion_type, annotation_sids, sid)
                if item.ion_type is IonType.STRUCT:
                    stack.append((symbol_id(name), child) for name, child in item.value)
                else:
                    stack.append((None, child) for child in item.value)
            elif item.ion_type is IonType.SYMBOL:
                self.write_scalar(IonType.SYMBOL, symbol_id(item.value), annotation_sids, sid)
            else:
                self.write_scalar(item.ion_type, item.value, annotation_sids, sid)

    def take(self) -> bytes:
        """Return and clear the bytes of completed top-level values."""
        data = bytes(self._out)
        self._out.clear()
        return data
