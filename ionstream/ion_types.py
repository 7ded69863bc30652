"""
ion_types.py - Value model shared by the readers and writers

Every decoded value is an IonValue: an Ion type, a payload and an ordered
tuple of annotation symbols. Payload types per IonType:

    NULL       None (any type may be null: value is None)
    BOOL       bool
    INT        int (arbitrary precision)
    FLOAT      float
    DECIMAL    decimal.Decimal (exponent and sign of zero preserved)
    TIMESTAMP  Timestamp
    SYMBOL     SymbolToken
    STRING     str
    CLOB/BLOB  bytes (or memoryview when lob views are enabled)
    LIST/SEXP  List[IonValue]
    STRUCT     List[Tuple[SymbolToken, IonValue]] (insertion order, duplicates kept)

Usage:
    from ionstream.ion_types import ion_value, IonType

    value = ion_value({'a': 1, 'b': [True, None]}, annotations=['foo'])
    assert value.ion_type is IonType.STRUCT
"""

import calendar
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

from .errors import IonTypeError


class IonType(IntEnum):
    """Ion value types. Values match the binary type-descriptor high nibble."""
    NULL = 0x0
    BOOL = 0x1
    INT = 0x2
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

    @property
    def is_container(self) -> bool:
        return self in (IonType.LIST, IonType.SEXP, IonType.STRUCT)

    @property
    def text_name(self) -> str:
        return self.name.lower()


TYPE_BY_NAME = {t.text_name: t for t in IonType}


# =============================================================================
# Symbols
# =============================================================================

@dataclass(frozen=True, eq=False)
class SymbolToken:
    """A symbol reference: known text, a symbol id, or both.

    A token without text is an unresolved reference (or symbol zero when
    sid is 0). Tokens with text compare by text alone so that a symbol read
    back from binary (text and sid) equals the one that was written.
    """
    text: Optional[str] = None
    sid: Optional[int] = None

    def __post_init__(self):
        if self.text is None and self.sid is None:
            raise ValueError("SymbolToken needs text or a symbol id")
        if self.sid is not None and self.sid < 0:
            raise ValueError(f"Negative symbol id: {self.sid}")

    @property
    def is_symbol_zero(self) -> bool:
        return self.text is None and self.sid == 0

    def __eq__(self, other):
        if isinstance(other, str):
            return self.text == other
        if not isinstance(other, SymbolToken):
            return NotImplemented
        if self.text is not None or other.text is not None:
            return self.text == other.text
        return self.sid == other.sid

    def __hash__(self):
        if self.text is not None:
            return hash(self.text)
        return hash(('$sid', self.sid))

    def __repr__(self):
        if self.text is None:
            return f"SymbolToken(sid={self.sid})"
        return f"SymbolToken({self.text!r})"


SymbolLike = Union[str, SymbolToken]

SYMBOL_ZERO = SymbolToken(None, 0)


def as_symbol(symbol: SymbolLike) -> SymbolToken:
    """Coerce a str or SymbolToken to a SymbolToken."""
    if isinstance(symbol, SymbolToken):
        return symbol
    if isinstance(symbol, str):
        return SymbolToken(symbol)
    raise IonTypeError(f"Expected str or SymbolToken, got {type(symbol).__name__}")


# =============================================================================
# Timestamps
# =============================================================================

class TimestampPrecision(IntEnum):
    YEAR = 1
    MONTH = 2
    DAY = 3
    MINUTE = 4
    SECOND = 5
    FRACTION = 6


@dataclass(eq=False)
class Timestamp:
    """An Ion timestamp in local time.

    Precision is implied by the last field present. `offset` is minutes
    east of UTC; None means the offset is unknown (-00:00). Date-only
    precisions never carry an offset.
    """
    year: int
    month: Optional[int] = None
    day: Optional[int] = None
    hour: Optional[int] = None
    minute: Optional[int] = None
    second: Optional[int] = None
    fraction: Optional[Decimal] = None
    offset: Optional[int] = None

    def __post_init__(self):
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Year out of range: {self.year}")
        if self.month is None:
            if any(v is not None for v in (self.day, self.hour, self.minute, self.second)):
                raise ValueError("Timestamp fields present without a month")
        elif not 1 <= self.month <= 12:
            raise ValueError(f"Month out of range: {self.month}")
        if self.day is None:
            if any(v is not None for v in (self.hour, self.minute, self.second)):
                raise ValueError("Time of day present without a day")
        else:
            last_day = calendar.monthrange(self.year, self.month)[1]
            if not 1 <= self.day <= last_day:
                raise ValueError(f"Day out of range: {self.year}-{self.month:02d}-{self.day}")
        if (self.hour is None) != (self.minute is None):
            raise ValueError("Hour and minute must be given together")
        if self.hour is not None:
            if not 0 <= self.hour <= 23:
                raise ValueError(f"Hour out of range: {self.hour}")
            if not 0 <= self.minute <= 59:
                raise ValueError(f"Minute out of range: {self.minute}")
        if self.second is not None:
            if self.minute is None:
                raise ValueError("Seconds present without minutes")
            if not 0 <= self.second <= 59:
                raise ValueError(f"Second out of range: {self.second}")
        if self.fraction is not None:
            if self.second is None:
                raise ValueError("Fractional seconds present without seconds")
            if not isinstance(self.fraction, Decimal) or not self.fraction.is_finite():
                raise ValueError(f"Fraction must be a finite Decimal: {self.fraction!r}")
            if self.fraction.is_signed() or self.fraction >= 1:
                raise ValueError(f"Fraction out of range [0, 1): {self.fraction}")
            if self.fraction.as_tuple().exponent >= 0:
                # 0d0 carries no sub-second digits
                self.fraction = None
        if self.offset is not None:
            if self.hour is None:
                raise ValueError("Date-only timestamps cannot carry an offset")
            if not -1440 < self.offset < 1440:
                raise ValueError(f"Offset out of range: {self.offset}")

    @property
    def precision(self) -> TimestampPrecision:
        if self.fraction is not None:
            return TimestampPrecision.FRACTION
        if self.second is not None:
            return TimestampPrecision.SECOND
        if self.minute is not None:
            return TimestampPrecision.MINUTE
        if self.day is not None:
            return TimestampPrecision.DAY
        if self.month is not None:
            return TimestampPrecision.MONTH
        return TimestampPrecision.YEAR

    def _key(self):
        return (self.year, self.month, self.day, self.hour, self.minute,
                self.second, self.offset)

    def __eq__(self, other):
        if not isinstance(other, Timestamp):
            return NotImplemented
        if self._key() != other._key():
            return False
        if self.fraction is None or other.fraction is None:
            return self.fraction is other.fraction
        return self.fraction.compare_total(other.fraction) == 0

    def __hash__(self):
        return hash(self._key() + (str(self.fraction),))

    @classmethod
    def from_datetime(cls, value: Union[datetime, date]) -> 'Timestamp':
        """Build a timestamp from a datetime (second precision or finer) or a date."""
        if not isinstance(value, datetime):
            return cls(value.year, value.month, value.day)
        fraction = None
        if value.microsecond:
            fraction = Decimal(value.microsecond).scaleb(-6)
        offset = None
        delta = value.utcoffset()
        if delta is not None:
            offset = int(delta.total_seconds()) // 60
        return cls(value.year, value.month, value.day, value.hour, value.minute,
                   value.second, fraction, offset)

    def to_datetime(self) -> datetime:
        """Convert to datetime; naive when the offset is unknown."""
        microsecond = 0
        if self.fraction is not None:
            microsecond = int(self.fraction.scaleb(6))
        tz = None
        if self.offset is not None:
            tz = timezone(timedelta(minutes=self.offset))
        return datetime(self.year, self.month or 1, self.day or 1, self.hour or 0,
                        self.minute or 0, self.second or 0, microsecond, tzinfo=tz)


# =============================================================================
# Values
# =============================================================================

def _float_equivalent(a: float, b: float) -> bool:
    if math.isnan(a) or math.isnan(b):
        return math.isnan(a) and math.isnan(b)
    return a == b and math.copysign(1.0, a) == math.copysign(1.0, b)


def _scalar_equivalent(ion_type: IonType, a: Any, b: Any) -> bool:
    if ion_type is IonType.FLOAT:
        return _float_equivalent(a, b)
    if ion_type is IonType.DECIMAL:
        return a.compare_total(b) == 0
    if ion_type in (IonType.BLOB, IonType.CLOB):
        return bytes(a) == bytes(b)
    return a == b


@dataclass(eq=False)
class IonValue:
    """A fully materialized Ion value with its annotations."""
    ion_type: IonType
    value: Any = None
    annotations: Tuple[SymbolToken, ...] = field(default_factory=tuple)

    def __post_init__(self):
        self.annotations = tuple(as_symbol(a) for a in self.annotations)

    @property
    def is_null(self) -> bool:
        return self.value is None

    def __eq__(self, other):
        """Ion equivalence, compared with an explicit stack."""
        if not isinstance(other, IonValue):
            return NotImplemented
        stack = [(self, other)]
        while stack:
            a, b = stack.pop()
            if a.ion_type is not b.ion_type or a.annotations != b.annotations:
                return False
            if a.value is None or b.value is None:
                if a.value is not b.value:
                    return False
                continue
            if a.ion_type in (IonType.LIST, IonType.SEXP):
                if len(a.value) != len(b.value):
                    return False
                stack.extend(zip(a.value, b.value))
            elif a.ion_type is IonType.STRUCT:
                if len(a.value) != len(b.value):
                    return False
                for (name_a, child_a), (name_b, child_b) in zip(a.value, b.value):
                    if name_a != name_b:
                        return False
                    stack.append((child_a, child_b))
            elif not _scalar_equivalent(a.ion_type, a.value, b.value):
                return False
        return True

    __hash__ = None

    # -- container helpers ----------------------------------------------------

    def __len__(self) -> int:
        return len(self._container())

    def __iter__(self) -> Iterator:
        return iter(self._container())

    def __getitem__(self, key):
        if isinstance(key, str):
            for name, child in self.expect_struct():
                if name == key:
                    return child
            raise KeyError(key)
        return self._container()[key]

    def _container(self) -> list:
        if not self.ion_type.is_container or self.value is None:
            raise IonTypeError(f"{self._describe()} is not a container")
        return self.value

    def get(self, name: str, default: Any = None) -> Any:
        """Return the first field called `name`, or `default`."""
        for field_name, child in self.expect_struct():
            if field_name == name:
                return child
        return default

    def get_all(self, name: str) -> List['IonValue']:
        """Return every field called `name` in insertion order."""
        return [child for field_name, child in self.expect_struct() if field_name == name]

    # -- typed accessors ------------------------------------------------------

    def _describe(self) -> str:
        if self.value is None:
            return f"null.{self.ion_type.text_name}"
        return self.ion_type.text_name

    def expect(self, ion_type: IonType) -> Any:
        if self.ion_type is not ion_type or self.value is None:
            raise IonTypeError(f"Expected {ion_type.text_name} but found {self._describe()}")
        return self.value

    def expect_null(self) -> IonType:
        if self.value is not None:
            raise IonTypeError(f"Expected a null but found {self._describe()}")
        return self.ion_type

    def expect_bool(self) -> bool:
        return self.expect(IonType.BOOL)

    def expect_int(self) -> int:
        return self.expect(IonType.INT)

    def expect_float(self) -> float:
        return self.expect(IonType.FLOAT)

    def expect_decimal(self) -> Decimal:
        return self.expect(IonType.DECIMAL)

    def expect_timestamp(self) -> Timestamp:
        return self.expect(IonType.TIMESTAMP)

    def expect_string(self) -> str:
        return self.expect(IonType.STRING)

    def expect_symbol(self) -> SymbolToken:
        return self.expect(IonType.SYMBOL)

    def expect_text(self) -> Optional[str]:
        """Text of a string or symbol (None for a symbol with unknown text)."""
        if self.ion_type is IonType.SYMBOL and self.value is not None:
            return self.value.text
        return self.expect(IonType.STRING)

    def expect_blob(self) -> bytes:
        return self.expect(IonType.BLOB)

    def expect_clob(self) -> bytes:
        return self.expect(IonType.CLOB)

    def expect_list(self) -> List['IonValue']:
        return self.expect(IonType.LIST)

    def expect_sexp(self) -> List['IonValue']:
        return self.expect(IonType.SEXP)

    def expect_struct(self) -> List[Tuple[SymbolToken, 'IonValue']]:
        return self.expect(IonType.STRUCT)


@dataclass
class RawValue:
    """A value positioned under a raw cursor, before symbol resolution.

    Symbol-bearing parts hold SymbolTokens that may carry only a sid.
    `handle` is cursor-specific (a binary header or a text node index).
    A non-None `version` marks a version marker rather than a value.
    """
    ion_type: Optional[IonType]
    is_null: bool = False
    annotations: Tuple[SymbolToken, ...] = ()
    field_name: Optional[SymbolToken] = None
    offset: int = 0
    handle: Any = None
    version: Optional[Tuple[int, int]] = None

    @property
    def is_version_marker(self) -> bool:
        return self.version is not None


# =============================================================================
# Native conversion
# =============================================================================

def _scalar_to_ion(obj: Any) -> Optional[IonValue]:
    if obj is None:
        return IonValue(IonType.NULL)
    if isinstance(obj, IonValue):
        return obj
    if isinstance(obj, bool):
        return IonValue(IonType.BOOL, obj)
    if isinstance(obj, int):
        return IonValue(IonType.INT, obj)
    if isinstance(obj, float):
        return IonValue(IonType.FLOAT, obj)
    if isinstance(obj, Decimal):
        return IonValue(IonType.DECIMAL, obj)
    if isinstance(obj, Timestamp):
        return IonValue(IonType.TIMESTAMP, obj)
    if isinstance(obj, (datetime, date)):
        return IonValue(IonType.TIMESTAMP, Timestamp.from_datetime(obj))
    if isinstance(obj, str):
        return IonValue(IonType.STRING, obj)
    if isinstance(obj, SymbolToken):
        return IonValue(IonType.SYMBOL, obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return IonValue(IonType.BLOB, bytes(obj))
    return None


def ion_value(obj: Any, annotations: Sequence[SymbolLike] = ()) -> IonValue:
    """Convert native Python data to an IonValue.

    dict -> struct (keys must be str or SymbolToken), list/tuple -> list,
    str -> string, SymbolToken -> symbol, bytes -> blob, datetime/date ->
    timestamp. IonValue instances are passed through unchanged.
    """
    result: List[Any] = []
    stack = [(obj, None, result)]
    while stack:
        item, name, out = stack.pop()
        value = _scalar_to_ion(item)
        if value is None:
            if isinstance(item, dict):
                value = IonValue(IonType.STRUCT, [])
                children = []
                for key, child in item.items():
                    if not isinstance(key, (str, SymbolToken)):
                        raise IonTypeError(f"Struct field names must be text, got {key!r}")
                    children.append((child, as_symbol(key), value.value))
            elif isinstance(item, (list, tuple)):
                value = IonValue(IonType.LIST, [])
                children = [(child, None, value.value) for child in item]
            else:
                raise IonTypeError(f"Cannot convert {type(item).__name__} to an Ion value")
            stack.extend(reversed(children))
        out.append(value if name is None else (name, value))
    root = result[0]
    if annotations:
        root = IonValue(root.ion_type, root.value, tuple(annotations))
    return root
