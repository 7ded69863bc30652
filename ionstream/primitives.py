"""
primitives.py - Binary primitive encoders/decoders

Implements the scalar building blocks of the Ion 1.0 binary encoding:

    VarUInt   base-128, big-endian groups, high bit set on the LAST byte
    VarInt    as VarUInt, bit 6 of the first byte is the sign
    UInt      fixed-length big-endian magnitude
    Int       fixed-length big-endian sign-and-magnitude (sign = top bit)
    Float     IEEE-754 binary32/binary64, big-endian
    Decimal   VarInt exponent followed by an Int coefficient
    Timestamp VarInt offset, VarUInt date/time fields in UTC, optional
              VarInt/Int fractional seconds

Decoders take (buf, pos, limit) and return (value, new_pos) or read a
[start, end) range. Every read is bounds-checked; running past the limit
raises TruncatedInput, any other violation raises MalformedInput.
"""

import math
import struct
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from .errors import IonTypeError, MalformedInput, TruncatedInput
from .ion_types import Timestamp, TimestampPrecision


# =============================================================================
# Variable-length integers
# =============================================================================

def encode_varuint(value: int) -> bytes:
    """Encode a non-negative integer as VarUInt."""
    if value < 0:
        raise ValueError(f"VarUInt cannot encode negative value {value}")
    out = bytearray([(value & 0x7F) | 0x80])
    value >>= 7
    while value:
        out.append(value & 0x7F)
        value >>= 7
    out.reverse()
    return bytes(out)


def decode_varuint(buf, pos: int, limit: Optional[int] = None) -> Tuple[int, int]:
    """Decode a VarUInt at pos. Returns (value, new_pos)."""
    if limit is None:
        limit = len(buf)
    result = 0
    start = pos
    while True:
        if pos >= limit:
            raise TruncatedInput("VarUInt is not terminated", offset=start)
        byte = buf[pos]
        pos += 1
        result = (result << 7) | (byte & 0x7F)
        if byte & 0x80:
            return result, pos


def encode_varint(value: int, negative_zero: bool = False) -> bytes:
    """Encode a signed integer as VarInt. negative_zero writes -0 (0xC0)."""
    negative = value < 0 or (value == 0 and negative_zero)
    magnitude = abs(value)
    bits = magnitude.bit_length()
    size = 1 if bits <= 6 else 1 + (bits - 6 + 6) // 7
    out = bytearray(size)
    for i in range(size - 1, 0, -1):
        out[i] = magnitude & 0x7F
        magnitude >>= 7
    out[0] = magnitude & 0x3F
    if negative:
        out[0] |= 0x40
    out[-1] |= 0x80
    return bytes(out)


def decode_varint_parts(buf, pos: int, limit: Optional[int] = None) -> Tuple[int, bool, int]:
    """Decode a VarInt keeping its sign bit. Returns (magnitude, negative, new_pos)."""
    if limit is None:
        limit = len(buf)
    start = pos
    if pos >= limit:
        raise TruncatedInput("VarInt is not terminated", offset=start)
    byte = buf[pos]
    pos += 1
    negative = bool(byte & 0x40)
    magnitude = byte & 0x3F
    while not byte & 0x80:
        if pos >= limit:
            raise TruncatedInput("VarInt is not terminated", offset=start)
        byte = buf[pos]
        pos += 1
        magnitude = (magnitude << 7) | (byte & 0x7F)
    return magnitude, negative, pos


def decode_varint(buf, pos: int, limit: Optional[int] = None,
                  allow_negative_zero: bool = True) -> Tuple[int, int]:
    """Decode a VarInt at pos. Returns (value, new_pos)."""
    magnitude, negative, end = decode_varint_parts(buf, pos, limit)
    if negative and magnitude == 0 and not allow_negative_zero:
        raise MalformedInput("VarInt negative zero is not allowed here", offset=pos)
    return (-magnitude if negative else magnitude), end


# =============================================================================
# Fixed-length integers
# =============================================================================

def _check_range(buf, start: int, end: int, what: str):
    if start > end or end > len(buf):
        raise TruncatedInput(f"{what} needs {end - start} bytes at pos {start}", offset=start)


def encode_uint(value: int) -> bytes:
    """Minimal big-endian magnitude; zero encodes as no bytes."""
    if value < 0:
        raise ValueError(f"UInt cannot encode negative value {value}")
    return value.to_bytes((value.bit_length() + 7) // 8, 'big')


def decode_uint(buf, start: int, end: int) -> int:
    _check_range(buf, start, end, "UInt")
    return int.from_bytes(bytes(buf[start:end]), 'big')


def encode_int(value: int, negative_zero: bool = False) -> bytes:
    """Sign-and-magnitude Int. Zero is empty unless negative_zero (0x80)."""
    negative = value < 0 or (value == 0 and negative_zero)
    magnitude = abs(value)
    if magnitude == 0 and not negative:
        return b''
    body = bytearray(encode_uint(magnitude))
    if not body or body[0] & 0x80:
        body.insert(0, 0)
    if negative:
        body[0] |= 0x80
    return bytes(body)


def decode_int(buf, start: int, end: int) -> Tuple[int, bool]:
    """Decode a sign-and-magnitude Int. Returns (value, negative)."""
    _check_range(buf, start, end, "Int")
    if start == end:
        return 0, False
    first = buf[start]
    negative = bool(first & 0x80)
    magnitude = int.from_bytes(bytes([first & 0x7F]) + bytes(buf[start + 1:end]), 'big')
    return (-magnitude if negative else magnitude), negative


# =============================================================================
# Floats
# =============================================================================

def encode_float(value: float, compact: bool = True) -> bytes:
    """Float body: empty for +0e0, 4 bytes when lossless and compact, else 8."""
    if value == 0.0 and math.copysign(1.0, value) > 0:
        return b''
    if compact and value == value:
        try:
            packed = struct.pack('>f', value)
        except OverflowError:
            packed = None
        if packed is not None and struct.unpack('>f', packed)[0] == value:
            return packed
    return struct.pack('>d', value)


def decode_float(buf, start: int, end: int) -> float:
    _check_range(buf, start, end, "Float")
    size = end - start
    if size == 0:
        return 0.0
    if size == 4:
        return struct.unpack('>f', bytes(buf[start:end]))[0]
    if size == 8:
        return struct.unpack('>d', bytes(buf[start:end]))[0]
    raise MalformedInput(f"Invalid float length {size}", offset=start)


# =============================================================================
# Decimals
# =============================================================================

def _digits(value: int) -> Tuple[int, ...]:
    # Decimal(int) is exact and not subject to the int-to-str digit limit
    return Decimal(value).as_tuple().digits


def _coefficient(digits: Tuple[int, ...]) -> int:
    return int(Decimal((0, digits, 0))) if digits else 0


def encode_decimal(value: Decimal) -> bytes:
    """Decimal body: empty for 0d0, else VarInt exponent + Int coefficient."""
    sign, digits, exponent = value.as_tuple()
    if not isinstance(exponent, int):
        raise IonTypeError(f"Ion decimals cannot represent {value}")
    coefficient = _coefficient(digits)
    if coefficient == 0 and exponent == 0 and not sign:
        return b''
    return encode_varint(exponent) + encode_int(coefficient, negative_zero=bool(sign))


def decode_decimal(buf, start: int, end: int) -> Decimal:
    _check_range(buf, start, end, "Decimal")
    if start == end:
        return Decimal(0)
    exponent, pos = decode_varint(buf, start, end)
    coefficient, negative = decode_int(buf, pos, end)
    try:
        return Decimal((1 if negative else 0, _digits(abs(coefficient)), exponent))
    except (ValueError, ArithmeticError):
        raise MalformedInput(f"Decimal exponent {exponent} out of range", offset=start)


# =============================================================================
# Timestamps
# =============================================================================

def _shift(ts_fields: Tuple[int, int, int, int, int], minutes: int) -> Tuple[int, int, int, int, int]:
    year, month, day, hour, minute = ts_fields
    try:
        moved = datetime(year, month, day, hour, minute) + timedelta(minutes=minutes)
    except (OverflowError, ValueError) as e:
        raise ValueError(f"Timestamp out of range after offset adjustment: {e}")
    return moved.year, moved.month, moved.day, moved.hour, moved.minute


def encode_timestamp(ts: Timestamp) -> bytes:
    """Timestamp body. Time-of-day fields are written in UTC."""
    precision = ts.precision
    out = bytearray(encode_varint(ts.offset or 0, negative_zero=ts.offset is None))
    if precision >= TimestampPrecision.MINUTE:
        try:
            year, month, day, hour, minute = _shift(
                (ts.year, ts.month, ts.day, ts.hour, ts.minute), -(ts.offset or 0))
        except ValueError as e:
            raise IonTypeError(f"Cannot encode timestamp {ts}: {e}")
    else:
        year, month, day, hour, minute = ts.year, ts.month, ts.day, None, None
    out += encode_varuint(year)
    if precision >= TimestampPrecision.MONTH:
        out += encode_varuint(month)
    if precision >= TimestampPrecision.DAY:
        out += encode_varuint(day)
    if precision >= TimestampPrecision.MINUTE:
        out += encode_varuint(hour)
        out += encode_varuint(minute)
    if precision >= TimestampPrecision.SECOND:
        out += encode_varuint(ts.second)
    if precision is TimestampPrecision.FRACTION:
        _, digits, exponent = ts.fraction.as_tuple()
        coefficient = _coefficient(digits)
        out += encode_varint(exponent)
        out += encode_int(coefficient)
    return bytes(out)


def decode_timestamp(buf, start: int, end: int) -> Timestamp:
    _check_range(buf, start, end, "Timestamp")
    if start == end:
        raise MalformedInput("Timestamp has no fields", offset=start)
    magnitude, negative, pos = decode_varint_parts(buf, start, end)
    offset = None if (negative and magnitude == 0) else (-magnitude if negative else magnitude)
    year, pos = decode_varuint(buf, pos, end)
    month = day = hour = minute = second = fraction = None
    if pos < end:
        month, pos = decode_varuint(buf, pos, end)
    if pos < end:
        day, pos = decode_varuint(buf, pos, end)
    if pos < end:
        hour, pos = decode_varuint(buf, pos, end)
        if pos >= end:
            raise MalformedInput("Timestamp has an hour but no minute", offset=start)
        minute, pos = decode_varuint(buf, pos, end)
    if pos < end:
        second, pos = decode_varuint(buf, pos, end)
    if pos < end:
        exponent, pos = decode_varint(buf, pos, end)
        coefficient, frac_negative = decode_int(buf, pos, end)
        pos = end
        if frac_negative:
            raise MalformedInput("Timestamp fraction is negative", offset=start)
        if coefficient or exponent < 0:
            try:
                fraction = Decimal((0, _digits(coefficient), exponent))
            except (ValueError, ArithmeticError):
                raise MalformedInput(f"Timestamp fraction exponent {exponent} out of range", offset=start)
            if fraction >= 1:
                raise MalformedInput(f"Timestamp fraction {fraction} is not below 1", offset=start)
    if hour is None:
        offset = None
    try:
        if hour is not None and offset:
            year, month, day, hour, minute = _shift((year, month, day, hour, minute), offset)
        return Timestamp(year, month, day, hour, minute, second, fraction, offset)
    except ValueError as e:
        raise MalformedInput(f"Invalid timestamp: {e}", offset=start)


# =============================================================================
# Text
# =============================================================================

def decode_utf8(buf, start: int, end: int) -> str:
    _check_range(buf, start, end, "String")
    try:
        return bytes(buf[start:end]).decode('utf-8')
    except UnicodeDecodeError as e:
        raise MalformedInput(f"Invalid UTF-8 in string: {e.reason}", offset=start + e.start)
