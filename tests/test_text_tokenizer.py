"""
Tests for the Ion text tokenizer and literal conversion.
"""

from decimal import Decimal

import pytest

from ionstream.errors import MalformedInput, TruncatedInput
from ionstream.ion_types import Timestamp, TimestampPrecision
from ionstream.text_tokenizer import (
    TextTokenizer, TokenType, parse_blob, parse_decimal, parse_float, parse_int,
    parse_timestamp,
)


def kinds(text, in_sexp=False):
    tokens = TextTokenizer(text)
    out = []
    while True:
        token = tokens.next_token(in_sexp)
        if token.kind is TokenType.EOF:
            return out
        out.append(token.kind)


def single(text, in_sexp=False):
    return TextTokenizer(text).next_token(in_sexp)


class TestPunctuation:
    """Tests for structural tokens."""

    def test_struct(self):
        assert kinds('{a: 1}') == [
            TokenType.LBRACE, TokenType.IDENTIFIER, TokenType.COLON, TokenType.INT, TokenType.RBRACE,
        ]

    def test_annotation_separator(self):
        assert kinds("foo::'bar'::[]") == [
            TokenType.IDENTIFIER, TokenType.DOUBLE_COLON, TokenType.QUOTED_SYMBOL,
            TokenType.DOUBLE_COLON, TokenType.LBRACKET, TokenType.RBRACKET,
        ]

    def test_comments_are_whitespace(self):
        assert kinds('// line\n 1 /* block\n */ 2') == [TokenType.INT, TokenType.INT]


class TestNumbers:
    """Tests for numeric and timestamp classification."""

    @pytest.mark.parametrize('text,kind', [
        ('0', TokenType.INT),
        ('-42', TokenType.INT),
        ('1_000', TokenType.INT),
        ('0x1F', TokenType.INT),
        ('0b101', TokenType.INT),
        ('1.5e0', TokenType.FLOAT),
        ('-1e-3', TokenType.FLOAT),
        ('-inf', TokenType.FLOAT),
        ('+inf', TokenType.FLOAT),
        ('1.5', TokenType.DECIMAL),
        ('1.', TokenType.DECIMAL),
        ('1d2', TokenType.DECIMAL),
        ('2007T', TokenType.TIMESTAMP),
        ('2007-01-01', TokenType.TIMESTAMP),
        ('2007-02-23T12:14:33.079-08:00', TokenType.TIMESTAMP),
    ])
    def test_classification(self, text, kind):
        token = single(text)
        assert token.kind is kind
        assert token.value == text

    @pytest.mark.parametrize('text', ['01', '1__0', '1_', '0x', '2007-01', '1.2.3', '12abc'])
    def test_invalid_numbers(self, text):
        with pytest.raises(MalformedInput):
            single(text)

    def test_int_values(self):
        assert parse_int('-0x1F') == -31
        assert parse_int('0b1_0') == 2
        assert parse_int('1' + '0' * 4999) == 10 ** 4999

    def test_float_values(self):
        assert parse_float('1.5e0') == 1.5
        assert parse_float('-inf') == float('-inf')

    def test_decimal_values(self):
        assert parse_decimal('1.5d-2').as_tuple() == Decimal('0.015').as_tuple()
        assert str(parse_decimal('-0.')) == '-0'
        assert str(parse_decimal('1.50')) == '1.50'


class TestTimestampLiterals:
    """Tests for timestamp text conversion."""

    def test_full_timestamp(self):
        ts = parse_timestamp('2007-02-23T12:14:33.079-08:00')
        assert ts == Timestamp(2007, 2, 23, 12, 14, 33, Decimal('0.079'), -480)

    def test_precisions(self):
        assert parse_timestamp('2007T').precision is TimestampPrecision.YEAR
        assert parse_timestamp('2007-01T').precision is TimestampPrecision.MONTH
        assert parse_timestamp('2007-01-01T').precision is TimestampPrecision.DAY
        assert parse_timestamp('2007-01-01T10:00Z').precision is TimestampPrecision.MINUTE

    def test_unknown_offset(self):
        assert parse_timestamp('2007-01-01T10:00-00:00').offset is None
        assert parse_timestamp('2007-01-01T10:00Z').offset == 0

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp('2007-02-30')
        with pytest.raises(ValueError):
            parse_timestamp('2007-01-01T10:00+24:00')


class TestQuotedText:
    """Tests for strings, quoted symbols and escapes."""

    def test_escapes(self):
        token = single(r'"a\nb\x41é\/"')
        assert token.kind is TokenType.STRING
        assert token.value == 'a\nbAé/'

    def test_surrogate_pair_escape(self):
        assert single(r'"\ud83d\ude00"').value == '\U0001F600'

    def test_unpaired_surrogate(self):
        with pytest.raises(MalformedInput):
            single(r'"\ud83d"')
        with pytest.raises(MalformedInput):
            single(r'"\ude00"')

    def test_quoted_symbol(self):
        token = single("'hello world'")
        assert token.kind is TokenType.QUOTED_SYMBOL
        assert token.value == 'hello world'

    def test_long_strings_concatenate(self):
        token = single("'''ab''' /* gap */ '''cd'''")
        assert token.kind is TokenType.STRING
        assert token.value == 'abcd'

    def test_long_string_keeps_newlines(self):
        assert single("'''a\nb'''").value == 'a\nb'

    def test_unescaped_newline_in_short_string(self):
        with pytest.raises(MalformedInput):
            single('"a\nb"')

    def test_invalid_escape(self):
        with pytest.raises(MalformedInput):
            single(r'"\q"')


class TestLobs:
    """Tests for blob and clob literals."""

    def test_blob(self):
        token = single('{{ aGk= }}')
        assert token.kind is TokenType.BLOB
        assert parse_blob(token.value) == b'hi'

    def test_clob(self):
        token = single(r'{{"hi\x21"}}')
        assert token.kind is TokenType.CLOB
        assert token.value == b'hi!'

    def test_long_clob(self):
        assert single("{{'''a''' '''b'''}}").value == b'ab'

    def test_clob_must_be_ascii(self):
        with pytest.raises(MalformedInput):
            single('{{"é"}}')

    def test_bad_base64(self):
        with pytest.raises(ValueError):
            parse_blob('aGk')


class TestIdentifiers:
    """Tests for identifiers, keywords, typed nulls and operators."""

    def test_typed_null(self):
        token = single('null.int')
        assert token.kind is TokenType.TYPED_NULL
        assert token.value == 'int'

    def test_invalid_typed_null(self):
        with pytest.raises(MalformedInput):
            single('null.integer')

    def test_operators_only_in_sexp(self):
        assert kinds('(a + -b)', in_sexp=True)[2:4] == [TokenType.OPERATOR, TokenType.OPERATOR]
        with pytest.raises(MalformedInput):
            single('+')

    def test_operator_run(self):
        token = single('<=>', in_sexp=True)
        assert token.kind is TokenType.OPERATOR
        assert token.value == '<=>'


class TestPositions:
    """Tests for error locations and incremental input."""

    def test_line_and_column(self):
        tokens = TextTokenizer('1\n  @')
        tokens.next_token()
        with pytest.raises(MalformedInput) as exc_info:
            tokens.next_token()
        error = exc_info.value
        assert (error.line, error.column) == (2, 3)
        assert error.offset == 4
        assert 'line 2, column 3' in str(error)

    def test_truncated_string_can_be_retried(self):
        tokens = TextTokenizer('"abc', final=False)
        with pytest.raises(TruncatedInput):
            tokens.next_token()
        tokens.feed('"')
        assert tokens.next_token().value == 'abc'

    def test_number_at_buffer_end_waits(self):
        tokens = TextTokenizer('12', final=False)
        with pytest.raises(TruncatedInput):
            tokens.next_token()
        tokens.close_input()
        assert tokens.next_token().value == '12'

    def test_split_utf8_sequence(self):
        tokens = TextTokenizer(b'"\xc3', final=False)
        with pytest.raises(TruncatedInput):
            tokens.next_token()
        tokens.feed(b'\xa9"')
        assert tokens.next_token().value == 'é'

    def test_invalid_utf8(self):
        with pytest.raises(MalformedInput):
            TextTokenizer(b'"\xff"')

    def test_unterminated_block_comment(self):
        with pytest.raises(TruncatedInput):
            single('/* never closed')
