"""
test_hypothesis.py - Property-based testing with Hypothesis

Generates arbitrary Ion value trees and checks that both encodings read
back what was written, and that random input never escapes as anything
other than an IonError.

Run with:
    pytest tests/test_hypothesis.py -v
    pytest tests/test_hypothesis.py -v --hypothesis-show-statistics
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ionstream import WriterOptions, dumps, loads, open_reader
from ionstream.binary_framing import IVM
from ionstream.errors import IncrementalInputPending, IonError
from ionstream.ion_types import IonType, IonValue, SymbolToken, Timestamp
from ionstream.primitives import (
    decode_varint, decode_varuint, encode_varint, encode_varuint,
)


# =============================================================================
# Strategies for generating Ion values
# =============================================================================

# no '$' so generated text never collides with system symbols or $N ids
symbol_text = st.text(alphabet='abcxyz_ 019', max_size=8)
symbols = symbol_text.map(SymbolToken)
annotations = st.lists(symbols, max_size=2).map(tuple)


@st.composite
def decimals(draw):
    sign = draw(st.integers(0, 1))
    coefficient = draw(st.integers(0, 10 ** 20))
    exponent = draw(st.integers(-30, 30))
    return Decimal((sign, tuple(int(d) for d in str(coefficient)), exponent))


@st.composite
def timestamps(draw):
    year = draw(st.integers(1000, 9000))
    depth = draw(st.integers(0, 5))
    fields = [year]
    if depth >= 1:
        fields.append(draw(st.integers(1, 12)))
    if depth >= 2:
        fields.append(draw(st.integers(1, 28)))
    if depth >= 3:
        fields.extend([draw(st.integers(0, 23)), draw(st.integers(0, 59))])
    if depth >= 4:
        fields.append(draw(st.integers(0, 59)))
    if depth >= 5:
        digits = draw(st.integers(1, 9))
        coefficient = draw(st.integers(1, 10 ** digits - 1))
        fields.append(Decimal(coefficient).scaleb(-digits))
    offset = None
    if depth >= 3:
        offset = draw(st.none() | st.integers(-1439, 1439))
    return Timestamp(*fields, offset=offset)


scalar_values = st.one_of(
    st.just(None),
    st.booleans(),
    st.integers(),
    st.floats(),
    decimals(),
    timestamps(),
    symbols,
    st.text(max_size=20),
    st.binary(max_size=20),
    st.tuples(st.just(IonType.CLOB), st.binary(max_size=20)),
    st.sampled_from(list(IonType)),
)

SCALAR_TYPES = {
    bool: IonType.BOOL, int: IonType.INT, float: IonType.FLOAT, Decimal: IonType.DECIMAL,
    Timestamp: IonType.TIMESTAMP, SymbolToken: IonType.SYMBOL, str: IonType.STRING,
    bytes: IonType.BLOB,
}


def to_scalar(value, annotations):
    if value is None:
        return IonValue(IonType.NULL, None, annotations)
    if isinstance(value, IonType):
        # typed null
        return IonValue(value, None, annotations)
    if isinstance(value, tuple):
        return IonValue(IonType.CLOB, value[1], annotations)
    return IonValue(SCALAR_TYPES[type(value)], value, annotations)


scalars = st.builds(to_scalar, scalar_values, annotations)


def containers(children):
    return st.one_of(
        st.builds(lambda items, a: IonValue(IonType.LIST, items, a),
                  st.lists(children, max_size=4), annotations),
        st.builds(lambda items, a: IonValue(IonType.SEXP, items, a),
                  st.lists(children, max_size=4), annotations),
        st.builds(lambda items, a: IonValue(IonType.STRUCT, items, a),
                  st.lists(st.tuples(symbols, children), max_size=4), annotations),
    )


ion_values = st.recursive(scalars, containers, max_leaves=12)
streams = st.lists(ion_values, max_size=4)


# =============================================================================
# Round trips
# =============================================================================

class TestRoundtrip:
    """Values written in either encoding read back as equivalent."""

    @given(streams)
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_binary(self, values):
        assert loads(dumps(values)) == values

    @given(streams)
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_text(self, values):
        assert loads(dumps(values, encoding='text')) == values

    @given(streams)
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_pretty_text(self, values):
        text = dumps(values, encoding='text', options=WriterOptions(pretty=True))
        assert loads(text) == values

    @given(streams)
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_text_to_binary(self, values):
        assert loads(dumps(loads(dumps(values, encoding='text')))) == values

    @given(streams, st.data())
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_incremental_chunks(self, values, data):
        encoded = dumps(values)
        cuts = sorted(data.draw(st.lists(st.integers(0, len(encoded)), max_size=6)))
        chunks = [encoded[a:b] for a, b in zip([0] + cuts, cuts + [len(encoded)])]
        reader = open_reader(b'', incremental=True)
        read_back = []
        for chunk in chunks:
            reader.feed(chunk)
            while True:
                try:
                    if reader.next() is None:
                        break
                except IncrementalInputPending:
                    break
                read_back.append(reader.read())
        reader.close_input()
        read_back.extend(reader)
        assert read_back == values


class TestVarFields:
    """Variable-length integer fields."""

    @given(st.integers(0, 2 ** 100))
    def test_varuint(self, value):
        encoded = encode_varuint(value)
        assert decode_varuint(encoded, 0, len(encoded)) == (value, len(encoded))

    @given(st.integers(-2 ** 100, 2 ** 100))
    def test_varint(self, value):
        encoded = encode_varint(value)
        assert decode_varint(encoded, 0, len(encoded)) == (value, len(encoded))


# =============================================================================
# Malformed input
# =============================================================================

class TestDecoderSafety:
    """Random input raises IonError or decodes; nothing else escapes."""

    @given(st.binary(max_size=256))
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_random_binary(self, data):
        try:
            loads(IVM + data)
        except IonError:
            pass

    @given(st.text(max_size=100))
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_random_text(self, text):
        try:
            loads(text)
        except IonError:
            pass

    @given(st.text(alphabet='{}[]()\'":,. \nabc$_0123456789-+eEdTZx/*', max_size=60))
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_ion_like_text(self, text):
        try:
            loads(text)
        except IonError:
            pass

    @pytest.mark.slow
    @given(streams, st.data())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_mutated_binary(self, values, data):
        encoded = bytearray(dumps(values))
        position = data.draw(st.integers(len(IVM), max(len(IVM), len(encoded) - 1)))
        if position < len(encoded):
            encoded[position] = data.draw(st.integers(0, 255))
        try:
            loads(bytes(encoded))
        except IonError:
            pass
