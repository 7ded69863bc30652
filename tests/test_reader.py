"""
Tests for the pull reader over binary and text input.
"""

import io
from decimal import Decimal

import pytest

from ionstream import (
    ReaderOptions, dumps, ion_value, loads, open_reader,
)
from ionstream.errors import (
    IncrementalInputPending, IonUsageError, MalformedInput, StepOutRequired,
    TruncatedInput, UnresolvedSymbol, UnsupportedVersion,
)
from ionstream.ion_types import IonType, IonValue, SymbolToken, Timestamp
from ionstream.reader import ReaderState, detect_encoding


SAMPLE_TEXT = 'foo::{a: 1, b: [true, null]}'


def sample_inputs():
    return [SAMPLE_TEXT, dumps(loads(SAMPLE_TEXT))]


def drain_incremental(reader, chunks):
    """Feed chunks one at a time, reading every value that completes."""
    values = []
    for chunk in chunks:
        reader.feed(chunk)
        while True:
            try:
                if reader.next() is None:
                    break
            except IncrementalInputPending:
                break
            values.append(reader.read())
    reader.close_input()
    values.extend(reader)
    return values


class TestNavigation:
    """Tests for next/step_in/step_out on the same data in both encodings."""

    @pytest.mark.parametrize('data', sample_inputs(), ids=['text', 'binary'])
    def test_walk_annotated_struct(self, data):
        reader = open_reader(data)
        assert reader.next() is IonType.STRUCT
        assert reader.annotations == (SymbolToken('foo'),)
        reader.step_in()

        assert reader.next() is IonType.INT
        assert reader.field_name == 'a'
        assert reader.read().value == 1

        assert reader.next() is IonType.LIST
        assert reader.field_name == 'b'
        reader.step_in()
        assert reader.next() is IonType.BOOL
        assert reader.read().value is True
        assert reader.next() is IonType.NULL
        assert reader.is_null
        assert reader.read() == IonValue(IonType.NULL)
        assert reader.next() is None
        assert reader.state is ReaderState.END_OF_CONTAINER
        with pytest.raises(StepOutRequired):
            reader.next()
        reader.step_out()

        assert reader.next() is None
        reader.step_out()
        assert reader.depth == 0
        assert reader.next() is None
        assert reader.state is ReaderState.END_OF_STREAM
        assert reader.next() is None

    @pytest.mark.parametrize('data', sample_inputs(), ids=['text', 'binary'])
    def test_read_materializes_container(self, data):
        reader = open_reader(data)
        reader.next()
        value = reader.read()
        assert value == ion_value({'a': 1, 'b': [True, None]}, annotations=['foo'])
        assert value['b'][0].expect_bool() is True

    @pytest.mark.parametrize('encoding', ['text', 'binary'])
    def test_skipping_matches_reading(self, encoding):
        data = '[1, [2, {x: 3}], 4] 5'
        if encoding == 'binary':
            data = dumps(loads(data))
        reader = open_reader(data)
        reader.next()
        reader.step_in()
        skipped = []
        while reader.next() is not None:
            if reader.ion_type is IonType.INT:
                skipped.append(reader.read().value)
        reader.step_out()
        reader.next()
        assert skipped == [1, 4]
        assert reader.read().value == 5

    def test_step_out_skips_remaining_children(self):
        reader = open_reader('[1, 2, 3] 4')
        reader.next()
        reader.step_in()
        reader.next()
        reader.step_out()
        assert reader.next() is IonType.INT
        assert reader.read().value == 4

    def test_iterating_children(self):
        reader = open_reader('(a + 1)')
        reader.next()
        reader.step_in()
        children = list(reader)
        assert [c.ion_type for c in children] == [IonType.SYMBOL, IonType.SYMBOL, IonType.INT]
        assert children[1].expect_symbol() == '+'

    def test_read_is_cached(self):
        reader = open_reader('[1]')
        reader.next()
        assert reader.read() is reader.read()

    def test_step_in_after_read(self):
        reader = open_reader('[1]')
        reader.next()
        reader.read()
        with pytest.raises(IonUsageError):
            reader.step_in()

    def test_step_in_null_container(self):
        reader = open_reader('null.list')
        assert reader.next() is IonType.LIST
        assert reader.is_null
        with pytest.raises(IonUsageError):
            reader.step_in()

    def test_usage_errors(self):
        reader = open_reader('1')
        with pytest.raises(IonUsageError):
            reader.read()
        with pytest.raises(IonUsageError):
            reader.step_out()
        reader.next()
        with pytest.raises(IonUsageError):
            reader.step_in()


class TestSymbolTables:
    """Tests for version markers and local symbol tables in streams."""

    def test_binary_local_table(self, binary):
        data = binary(
            b'\xe9\x81\x83\xd6\x87\xb4\x81x\x81y',   # $ion_symbol_table::{symbols:["x","y"]}
            b'\xd3\x8a\x21\x01',                     # {$10: 1}
        )
        reader = open_reader(data)
        assert reader.next() is IonType.STRUCT
        assert reader.annotations == ()
        assert reader.symbol_table.get_id('y') == 11
        reader.step_in()
        reader.next()
        assert reader.field_name == SymbolToken('x', 10)
        assert reader.field_name.sid == 10

    def test_text_local_table(self):
        [value] = loads('$ion_symbol_table::{symbols:["x"]} {$10: $10}')
        name, child = value.value[0]
        assert name == 'x'
        assert child.expect_symbol() == 'x'

    def test_append_to_current_table(self):
        [value] = loads(
            '$ion_symbol_table::{symbols:["x"]} '
            '$ion_symbol_table::{imports:$ion_symbol_table, symbols:["y"]} '
            '[$10, $11]'
        )
        assert [c.value for c in value] == ['x', 'y']

    def test_null_table_is_empty(self):
        [value] = loads('$ion_symbol_table::{symbols:["x"]} $ion_symbol_table::null.struct $10')
        assert value.value == SymbolToken(None, 10)

    def test_version_marker_resets_table(self):
        values = loads('$ion_symbol_table::{symbols:["x"]} $10 $ion_1_0 $10')
        assert values[0].value == 'x'
        assert values[1].value.text is None

    def test_markers_are_not_values(self, binary):
        assert loads('$ion_1_0 1') == [ion_value(1)]
        assert loads(binary(b'\x21\x01', b'\xe0\x01\x00\xea')) == [ion_value(1)]

    def test_marker_lookalikes_are_symbols(self):
        values = loads("'$ion_1_0' foo::$ion_1_0 [$ion_1_0]")
        assert [v.ion_type for v in values] == [IonType.SYMBOL, IonType.SYMBOL, IonType.LIST]

    def test_unsupported_version(self):
        with pytest.raises(UnsupportedVersion) as exc_info:
            loads(b'\xe0\x02\x00\xea')
        assert exc_info.value.version == (2, 0)
        with pytest.raises(UnsupportedVersion):
            loads('$ion_2_0')

    def test_unresolved_symbol_is_soft_by_default(self, binary):
        [value] = loads(binary(b'\x71\x14'))
        assert value.value == SymbolToken(None, 20)

    def test_unresolved_symbol_strict(self, binary):
        with pytest.raises(UnresolvedSymbol):
            loads(binary(b'\x71\x14'), ReaderOptions(strict_symbols=True))

    def test_symbol_zero(self, binary):
        [value] = loads(binary(b'\x70'))
        assert value.value.is_symbol_zero


class TestRecovery:
    """A failed read() leaves the reader on the next top-level value."""

    STRICT = ReaderOptions(strict_symbols=True)

    def assert_recovers(self, reader, error):
        assert reader.next() is IonType.LIST
        with pytest.raises(error):
            reader.read()
        assert reader.depth == 0
        with pytest.raises(IonUsageError):
            reader.step_in()
        assert reader.next() is IonType.INT
        assert reader.read().value == 7
        assert reader.next() is None

    def test_unresolved_symbol_in_binary_list(self, binary):
        reader = open_reader(binary(b'\xb2\x71\x63', b'\x21\x07'), options=self.STRICT)
        self.assert_recovers(reader, UnresolvedSymbol)

    def test_malformed_child_in_binary_list(self, binary):
        self.assert_recovers(open_reader(binary(b'\xb2\x81\xff', b'\x21\x07')), MalformedInput)

    def test_unresolved_symbol_in_text_list(self):
        self.assert_recovers(open_reader('[1, {a: [$99]}] 7', options=self.STRICT), UnresolvedSymbol)

    def test_malformed_child_in_text_list(self):
        self.assert_recovers(open_reader('[[2007-02-30]] 7'), MalformedInput)

    def test_malformed_local_table(self):
        reader = open_reader('$ion_symbol_table::{symbols:[[2007-02-30]]} 7')
        with pytest.raises(MalformedInput):
            reader.next()
        assert reader.depth == 0
        assert reader.next() is IonType.INT


class TestTextGrammar:
    """Tests for text parsing through the reader."""

    def test_scalars(self):
        values = loads('null.int true 1.5e0 1.50 2007-01-01T "s" \'sym\' {{aGk=}} {{"c"}}')
        assert [v.ion_type for v in values] == [
            IonType.INT, IonType.BOOL, IonType.FLOAT, IonType.DECIMAL, IonType.TIMESTAMP,
            IonType.STRING, IonType.SYMBOL, IonType.BLOB, IonType.CLOB,
        ]
        assert values[0].is_null
        assert values[3].value.as_tuple() == Decimal('1.50').as_tuple()
        assert values[4].value == Timestamp(2007, 1, 1)
        assert values[7].value == b'hi'
        assert values[8].value == b'c'

    def test_nan_and_infinities(self):
        values = loads('nan +inf -inf')
        assert values[0].value != values[0].value
        assert values[1].value == float('inf')

    def test_field_names(self):
        [value] = loads('{"a b": 1, \'c\': 2, d: 3, d: 4}')
        assert [name.text for name, _ in value.value] == ['a b', 'c', 'd', 'd']
        assert [v.value for v in value.get_all('d')] == [3, 4]

    def test_trailing_commas(self):
        assert loads('[1, 2,]') == [ion_value([1, 2])]
        assert loads('{a: 1,}') == [ion_value({'a': 1})]

    def test_multiple_annotations(self):
        [value] = loads("a::'b'::c")
        assert value.annotations == (SymbolToken('a'), SymbolToken('b'))
        assert value.value == 'c'

    @pytest.mark.parametrize('text', [
        '{a 1}',
        '[1 2]',
        '[,]',
        '{a:1,,}',
        '{a:}',
        '{1: 2}',
        'true::1',
        ']',
        '(a ::)',
        '2007-13-01',
    ])
    def test_malformed(self, text):
        with pytest.raises(MalformedInput):
            loads(text)

    def test_unterminated_container(self):
        with pytest.raises(TruncatedInput):
            loads('[1, 2')

    def test_error_location(self):
        with pytest.raises(MalformedInput) as exc_info:
            loads('[1,\n 2 3]')
        assert exc_info.value.line == 2
        assert exc_info.value.column == 4


class TestIncremental:
    """Tests for incremental input."""

    def test_binary_byte_by_byte(self):
        expected = [
            ion_value({'name': SymbolToken('reading'), 'values': [1, 2.5, 'x']}, annotations=['t']),
            ion_value(b'\x00' * 20),
        ]
        data = dumps(expected)
        reader = open_reader(incremental=True)
        chunks = [data[i:i + 1] for i in range(len(data))]
        assert drain_incremental(reader, chunks) == expected

    def test_text_chunks(self):
        reader = open_reader(incremental=True)
        values = drain_incremental(reader, ['{a: [1, 2', '], b: "x', 'y"} 12', '3 foo::', 'bar'])
        assert values == loads('{a: [1, 2], b: "xy"} 123 foo::bar')

    def test_pending_until_value_completes(self):
        reader = open_reader(b'', incremental=True)
        with pytest.raises(IncrementalInputPending):
            reader.next()
        reader.feed('[1, ')
        with pytest.raises(IncrementalInputPending):
            reader.next()
        reader.feed('2] ')
        assert reader.next() is IonType.LIST
        assert reader.read() == ion_value([1, 2])
        with pytest.raises(IncrementalInputPending):
            reader.next()
        reader.close_input()
        assert reader.next() is None

    def test_truncation_after_close_is_malformed(self):
        reader = open_reader(b'\xe0\x01\x00\xea\x83a', incremental=True)
        with pytest.raises(IncrementalInputPending):
            reader.next()
        reader.close_input()
        with pytest.raises(TruncatedInput):
            reader.next()

    def test_feed_after_close(self):
        reader = open_reader('1 ', incremental=True)
        reader.close_input()
        with pytest.raises(IonUsageError):
            reader.feed('2')

    def test_explicit_encoding(self):
        reader = open_reader(incremental=True, encoding='binary')
        reader.feed(b'\xe0\x01\x00\xea\x21\x07')
        assert reader.next() is IonType.INT
        assert reader.read().value == 7


class TestLobViews:
    """Tests for memoryview blob access."""

    def test_view_released_on_next(self):
        data = dumps([ion_value(b'abc'), ion_value(1)])
        reader = open_reader(data, options=ReaderOptions(lob_views=True))
        reader.next()
        view = reader.read().value
        assert isinstance(view, memoryview)
        assert bytes(view) == b'abc'
        reader.next()
        with pytest.raises(ValueError):
            bytes(view)

    def test_copies_by_default(self):
        [value] = loads(dumps([ion_value(b'abc')]))
        assert isinstance(value.value, bytes)


class TestOpenReader:
    """Tests for input handling in open_reader."""

    def test_detect_encoding(self):
        assert detect_encoding(b'\xe0\x01\x00\xea') == 'binary'
        assert detect_encoding(b'{a:1}') == 'text'
        assert detect_encoding('') == 'text'

    def test_file_like(self):
        data = dumps([ion_value([1, 2])])
        assert loads(io.BytesIO(data)) == [ion_value([1, 2])]

    def test_unknown_encoding(self):
        with pytest.raises(ValueError):
            open_reader(b'', encoding='json')

    def test_binary_from_str(self):
        with pytest.raises(TypeError):
            open_reader('1', encoding='binary')

    def test_offsets(self, binary):
        reader = open_reader(binary(b'\x21\x01', b'\x21\x02'))
        reader.next()
        assert reader.offset == 4
        reader.next()
        assert reader.offset == 6


class TestDeepNesting:
    """Nesting depth is bounded by memory, not the call stack."""

    DEPTH = 100000

    def nested_lists(self):
        value = IonValue(IonType.LIST, [])
        for _ in range(self.DEPTH - 1):
            value = IonValue(IonType.LIST, [value])
        return value

    @pytest.mark.slow
    @pytest.mark.parametrize('encoding', ['text', 'binary'])
    def test_roundtrip(self, encoding):
        value = self.nested_lists()
        data = dumps([value], encoding=encoding)
        if encoding == 'text':
            assert data == '[' * self.DEPTH + ']' * self.DEPTH
        assert loads(data) == [value]

    @pytest.mark.slow
    def test_native_conversion(self):
        data = []
        for _ in range(self.DEPTH - 1):
            data = [data]
        assert ion_value(data) == self.nested_lists()

    def test_navigation_to_the_bottom(self):
        reader = open_reader('[' * 1000 + '1' + ']' * 1000)
        for _ in range(1000):
            assert reader.next() is IonType.LIST
            reader.step_in()
        assert reader.next() is IonType.INT
        assert reader.depth == 1000
        for _ in range(1000):
            reader.step_out()
        assert reader.next() is None
