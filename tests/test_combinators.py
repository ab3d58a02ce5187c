"""Tests for weftparse.combinators.

Primitives, sequencing, alternation, soft failure, repetition and the
checks that shape diagnostics. Run against a bare `StringIterator` so the
position and farthest position can be inspected after each attempt.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import pytest
from hypothesis import event, given
from hypothesis import strategies as st

from weftparse import (
    Parser,
    ParseFailure,
    Result,
    StringIterator,
    alpha,
    any_char,
    bracketed,
    cat,
    char,
    convert_parser,
    diagnose,
    digit,
    emplace,
    eof,
    exhaust,
    fail,
    first,
    fmap,
    generate,
    interleave,
    interleave_first,
    interleave_last,
    invoke,
    lazy,
    lift,
    lookahead,
    many,
    many1,
    many_exhaust,
    not_followed_by,
    not_of,
    on_error,
    one_of,
    optional,
    pred,
    ret,
    seq,
    seq_first,
    seq_last,
    string,
    try_,
    try_ignore,
    unwrap,
)
from weftparse import const


number = fmap(int, many1(digit))


def run(p: Any, text: str) -> tuple[Result[Any] | ParseFailure, StringIterator]:
    si = StringIterator(text)
    return convert_parser(p)(si), si


def recorder(calls: list[int]) -> Parser[None]:
    """Succeeds without consuming, and records the position of every attempt."""
    def record(si: StringIterator) -> Result[None]:
        calls.append(si.pos)
        return Result(None, (si.pos, si.pos))
    return Parser(record, "recorder")


# ============================================================================
# Primitives
# ============================================================================


class TestPrimitives:
    def test_char(self) -> None:
        r, si = run(char("a"), "ab")
        assert r.data == "a"
        assert si.pos == 1

    def test_char_mismatch(self) -> None:
        r, si = run(char("a"), "b")
        assert not r
        assert r.msg == "expected 'a'"
        assert si.pos == 0
        assert si.farthest == 1

    def test_char_at_eof(self) -> None:
        r, _ = run(char("a"), "")
        assert r.msg == const.EOF_FAILURE

    def test_char_requires_single_character(self) -> None:
        with pytest.raises(ValueError):
            char("ab")

    def test_any_char(self) -> None:
        assert run(any_char, "xy")[0].data == "x"
        assert not run(any_char, "")[0]

    def test_pred(self) -> None:
        vowel = pred(lambda ch: ch in "aeiou", "vowel")
        assert run(vowel, "e")[0].data == "e"
        r, si = run(vowel, "x")
        assert r.msg == "unexpected 'x'"
        assert si.pos == 0

    def test_string_returns_its_value(self) -> None:
        r, si = run(string("let"), "let x")
        assert r.data == "let"
        assert si.pos == 3

    def test_string_mismatch(self) -> None:
        r, si = run(string("let"), "lex")
        assert r.msg == "expected 'let'"
        assert si.pos == 0
        assert si.farthest == 3

    def test_str_converts_to_string(self) -> None:
        assert run("ab", "abc")[0].data == "ab"

    def test_eof(self) -> None:
        assert run(eof, "")[0]
        r, si = run(eof, "a")
        assert r.msg == const.INCOMPLETE_FAILURE
        assert si.farthest == 1

    def test_ret(self) -> None:
        r, si = run(ret(42), "abc")
        assert r.data == 42
        assert si.pos == 0

    def test_fail(self) -> None:
        r, si = run(fail("boom"), "abc")
        assert not r
        assert r.msg == "boom"

    def test_convert_rejects_non_parsers(self) -> None:
        with pytest.raises(TypeError):
            convert_parser(5)  # type: ignore[arg-type]


class TestCharacterClasses:
    def test_one_of(self) -> None:
        assert run(one_of("+-"), "-1")[0].data == "-"
        assert not run(one_of("+-"), "1")[0]

    def test_not_of(self) -> None:
        assert run(not_of(","), "a,")[0].data == "a"
        assert not run(not_of(","), ",")[0]

    @pytest.mark.parametrize(
        ("p", "good", "bad"),
        [(digit, "7", "x"), (alpha, "Q", "1")],
    )
    def test_classes(self, p: Parser[str], good: str, bad: str) -> None:
        assert run(p, good)[0].data == good
        assert not run(p, bad)[0]


# ============================================================================
# Sequencing
# ============================================================================


class TestSequencing:
    def test_seq(self) -> None:
        r, si = run(seq("a", digit, "b"), "a1b")
        assert r.data == ("a", "1", "b")
        assert si.pos == 3

    def test_seq_failure_restores_position(self) -> None:
        r, si = run(seq(string("ab"), string("cd")), "abxy")
        assert not r
        assert si.pos == 0
        assert si.farthest == 3

    def test_seq_stops_at_first_failure(self) -> None:
        calls: list[int] = []
        r, _ = run(seq("a", fail("stop"), recorder(calls)), "a")
        assert r.msg == "stop"
        assert calls == []

    @pytest.mark.parametrize(
        "build",
        [
            lambda rest: seq_first("a", fail("stop"), rest),
            lambda rest: seq_last("a", fail("stop"), rest),
            lambda rest: invoke(lambda *values: values, "a", fail("stop"), rest),
            lambda rest: bracketed("a", fail("stop"), rest),
        ],
        ids=["seq_first", "seq_last", "invoke", "bracketed"],
    )
    def test_sequence_variants_stop_at_first_failure(self, build: Any) -> None:
        calls: list[int] = []
        r, si = run(build(recorder(calls)), "a")
        assert r.msg == "stop"
        assert si.pos == 0
        assert calls == []

    def test_seq_requires_parsers(self) -> None:
        with pytest.raises(ValueError):
            seq()

    def test_seq_first_and_last(self) -> None:
        assert run(seq_first(digit, ";"), "1;")[0].data == "1"
        assert run(seq_last("(", digit), "(1")[0].data == "1"

    def test_invoke(self) -> None:
        add = invoke(lambda a, b: a + b, number, seq_last("+", number))
        assert run(add, "1+2")[0].data == 3

    def test_emplace(self) -> None:
        @dataclass
        class Point:
            x: int
            y: int

        point = emplace(Point, number, seq_last(",", number))
        assert run(point, "3,4")[0].data == Point(3, 4)

    def test_fmap(self) -> None:
        assert run(number, "123")[0].data == 123
        assert not run(number, "x")[0]

    def test_cat(self) -> None:
        assert run(cat("ab", many(digit)), "ab12x")[0].data == "ab12"

    def test_bracketed(self) -> None:
        r, si = run(bracketed("(", number, ")"), "(42)")
        assert r.data == 42
        assert si.pos == 4

    def test_bracketed_unclosed(self) -> None:
        r, si = run(bracketed("(", number, ")"), "(42")
        assert not r
        assert si.pos == 0


# ============================================================================
# Alternation
# ============================================================================


class TestFirst:
    def test_second_alternative(self) -> None:
        r, si = run(char("a") | char("b"), "b")
        assert r.data == "b"
        assert si.pos == 1

    def test_first_match_wins(self) -> None:
        r, si = run(first(string("a"), string("ab")), "ab")
        assert r.data == "a"
        assert si.pos == 1

    def test_later_alternatives_are_not_attempted(self) -> None:
        calls: list[int] = []
        r, _ = run(first("a", recorder(calls)), "a")
        assert r.data == "a"
        assert calls == []
        r, _ = run(char("a") | recorder(calls), "b")
        assert r
        assert calls == [0]

    def test_no_alternative(self) -> None:
        r, si = run(first("a", "b"), "c")
        assert r.msg == const.FIRST_FAILURE
        assert si.pos == 0

    def test_alternatives_start_at_the_same_position(self) -> None:
        r, _ = run(first(seq("a", "b"), seq("a", "c")), "ac")
        assert r.data == ("a", "c")

    def test_char_alternatives_yield_chars(self) -> None:
        r, _ = run(many(first("a", "b")), "abba")
        assert r.data == ["a", "b", "b", "a"]
        r, _ = run(many(char("a") | char("b")), "abba")
        assert r.data == "abba"


# ============================================================================
# Soft failure
# ============================================================================


class TestSoftFailure:
    def test_try_wraps_failure(self) -> None:
        r, si = run(try_(string("ab")), "ax")
        assert r
        assert isinstance(r.data, ParseFailure)
        assert si.pos == 0

    def test_try_wraps_success(self) -> None:
        r, si = run(try_(string("ab")), "ab")
        assert isinstance(r.data, Result)
        assert r.data.data == "ab"
        assert si.pos == 2

    def test_try_ignore(self) -> None:
        assert run(try_ignore("x"), "y")[0].data is None
        r, si = run(try_ignore("x"), "x")
        assert r.data is None
        assert si.pos == 1

    def test_optional(self) -> None:
        assert run(optional(char("-"), "+"), "5")[0].data == "+"
        assert run(optional(char("-"), "+"), "-5")[0].data == "-"
        assert run(optional(char("-")), "5")[0].data is None

    def test_lookahead(self) -> None:
        r, si = run(lookahead("ab"), "abc")
        assert r.data == "ab"
        assert si.pos == 0
        assert not run(lookahead("ab"), "xb")[0]

    def test_not_followed_by(self) -> None:
        r, si = run(not_followed_by(char("x")), "y")
        assert r
        assert si.pos == 0
        r, si = run(not_followed_by(char("x")), "x")
        assert not r
        assert si.pos == 0

    def test_keyword_boundary(self) -> None:
        keyword = seq_first(string("if"), not_followed_by(alpha))
        assert run(keyword, "if x")[0]
        assert not run(keyword, "iffy")[0]


# ============================================================================
# Repetition
# ============================================================================


class TestMany:
    def test_many1_collects_characters(self) -> None:
        r, si = run(many1(digit), "123a")
        assert r.data == "123"
        assert si.pos == 3

    def test_many_never_fails(self) -> None:
        r, si = run(many(digit), "abc")
        assert r
        assert r.data == ""
        assert si.pos == 0

    def test_many_collects_lists(self) -> None:
        assert run(many(string("ab")), "ababx")[0].data == ["ab", "ab"]

    def test_many_with_factory_arguments(self) -> None:
        r, si = run(many(char, "!"), "!!?")
        assert r.data == "!!"
        assert si.pos == 2

    def test_factory_arguments_require_a_callable(self) -> None:
        with pytest.raises(TypeError):
            many("a", "x")

    def test_zero_progress_element_stops(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG, logger="weftparse")
        r, si = run(many(optional(char("a"))), "aab")
        assert r.data == ["a", "a"]
        assert si.pos == 2
        assert any("without consuming" in record.getMessage() for record in caplog.records)

    def test_zero_progress_terminates(self) -> None:
        r, si = run(many(ret(1)), "x")
        assert r.data == []
        assert si.pos == 0

    def test_many1_propagates_element_failure(self) -> None:
        r, si = run(many1(char("x")), "y")
        assert r.msg == "expected 'x'"
        assert si.pos == 0

    def test_many1_zero_progress(self) -> None:
        r, _ = run(many1(ret(1)), "x")
        assert not r

    def test_many_exhaust(self) -> None:
        assert run(many_exhaust(digit), "12")[0].data == "12"
        r, si = run(many_exhaust(digit), "12a")
        assert r.msg == "unexpected 'a'"
        assert si.pos == 0
        assert si.farthest == 3

    @given(text=st.text(alphabet="0123456789ab", max_size=20))
    def test_many_digits_takes_the_digit_prefix(self, text: str) -> None:
        """`many(digit)` always succeeds and consumes exactly the leading digits."""
        prefix = re.match(r"[0-9]*", text).group()  # type: ignore[union-attr]
        event(f"prefix_len={len(prefix)}")
        r, si = run(many(digit), text)
        assert r.data == prefix
        assert si.pos == len(prefix)

    @given(
        prefix=st.text(alphabet="abc", max_size=5),
        text=st.text(alphabet="abc", max_size=8),
        target=st.text(alphabet="abc", min_size=1, max_size=4),
    )
    def test_try_restores_position_exactly(self, prefix: str, text: str, target: str) -> None:
        """`try_` always succeeds. When the inner attempt fails, the position is where it started."""
        si = StringIterator(prefix + text, len(prefix))
        r = try_(string(target))(si)
        event(f"inner={'ok' if r.data else 'fail'}")
        assert r
        if r.data:
            assert si.pos == len(prefix) + len(target)
        else:
            assert si.pos == len(prefix)
            assert r.pos == (len(prefix), len(prefix))

    @given(text=st.text(alphabet="abcdx", max_size=8))
    def test_failed_sequence_leaves_position_unchanged(self, text: str) -> None:
        """A failed attempt restores the position. `farthest` is never behind it."""
        r, si = run(seq(string("ab"), string("cd")), text)
        event(f"outcome={'ok' if r else 'fail'}")
        assert si.pos == (4 if r else 0)
        assert si.farthest >= si.pos


class TestInterleave:
    def test_interleave(self) -> None:
        r, si = run(interleave(number, ","), "1,22,3")
        assert r.data == [1, 22, 3]
        assert si.pos == 6

    def test_interleave_requires_one_element(self) -> None:
        assert not run(interleave(number, ","), "")[0]

    def test_interleave_rejects_trailing_separator(self) -> None:
        r, si = run(interleave(number, ","), "1,2,")
        assert not r
        assert si.pos == 0

    def test_interleave_characters(self) -> None:
        assert run(interleave(digit, ","), "1,2,3")[0].data == "123"

    def test_interleave_optional_separator(self) -> None:
        assert run(interleave(number, ",", False), "1,2,3")[0].data == [1, 2, 3]
        r, si = run(interleave(number, ",", False), "1,2,")
        assert r.data == [1, 2]
        assert si.pos == 4

    def test_interleave_first(self) -> None:
        r, si = run(interleave_first(number, ";"), ";1;2x")
        assert r.data == [1, 2]
        assert si.pos == 4

    def test_interleave_last(self) -> None:
        r, si = run(interleave_last(number, ";"), "1;2;x")
        assert r.data == [1, 2]
        assert si.pos == 4

    def test_interleave_first_optional_separator(self) -> None:
        r, si = run(interleave_first(number, ";", False), "1;2x")
        assert r.data == [1, 2]
        assert si.pos == 3
        r, si = run(interleave_first(number, ";", False), ";1;2")
        assert r.data == [1, 2]
        assert si.pos == 4

    def test_interleave_last_optional_separator(self) -> None:
        r, si = run(interleave_last(number, ";", False), "1;2x")
        assert r.data == [1, 2]
        assert si.pos == 3
        r, si = run(interleave_last(number, ";", False), "1;2;")
        assert r.data == [1, 2]
        assert si.pos == 4

    def test_required_separator_is_not_skipped(self) -> None:
        r, si = run(interleave_last(number, ";"), "1;2x")
        assert r.data == [1]
        assert si.pos == 2


# ============================================================================
# Checks and messages
# ============================================================================


class TestChecks:
    def test_exhaust(self) -> None:
        assert run(exhaust(many(char("x"))), "xx")[0].data == "xx"
        r, si = run(exhaust(many(char("x"))), "xxy")
        assert r.msg == const.INCOMPLETE_FAILURE
        assert si.pos == 0
        assert si.farthest == 3

    def test_on_error_replaces_message(self) -> None:
        r, si = run(on_error(many1(digit), "expected a number"), "x")
        assert r.msg == "expected a number"
        assert si.farthest == 1

    def test_on_error_keeps_success(self) -> None:
        assert run(on_error(many1(digit), "expected a number"), "1")[0].data == "1"

    def test_diagnose_reports_expected_failure(self) -> None:
        r, si = run(diagnose(interleave(number, ","), seq(",", number)), "1,2;3")
        assert r.msg == "expected ','"
        assert si.pos == 0
        assert si.farthest == 4

    def test_diagnose_generic_message(self) -> None:
        r, _ = run(diagnose(string("a"), any_char), "ab")
        assert r.msg == const.DIAGNOSE_FAILURE

    def test_diagnose_success(self) -> None:
        assert run(diagnose(string("a"), any_char), "a")[0].data == "a"

    def test_lift(self) -> None:
        assert run(lift(Result(5)), "")[0].data == 5
        r, _ = run(lift(ParseFailure("", 0, "nope")), "abc")
        assert r.msg == "nope"

    def test_unwrap(self) -> None:
        assert run(unwrap(try_(string("ab"))), "ab")[0].data == "ab"
        r, si = run(unwrap(try_(string("ab"))), "ax")
        assert r.msg == "expected 'ab'"
        assert si.pos == 0

    def test_unwrap_requires_an_outcome(self) -> None:
        with pytest.raises(TypeError):
            run(unwrap(ret(5)), "")


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    def test_lazy_recursion(self) -> None:
        depth: Parser[int]
        depth = first(fmap(lambda d: d + 1, bracketed("(", lazy(lambda: depth), ")")), ret(0))
        r, si = run(depth, "((()))")
        assert r.data == 3
        assert si.pos == 6

    def test_lazy_deep_nesting(self) -> None:
        depth: Parser[int]
        depth = first(fmap(lambda d: d + 1, bracketed("(", lazy(lambda: depth), ")")), ret(0))
        r, si = run(depth, "(" * 90 + ")" * 90)
        assert r.data == 90
        assert si.pos == 180

    def test_lazy_failure_restores_position(self) -> None:
        r, si = run(lazy(lambda: seq("a", "b")), "ax")
        assert not r
        assert si.pos == 0

    def test_lazy_builds_once(self) -> None:
        built: list[int] = []

        def factory() -> Parser[str]:
            built.append(1)
            return string("a")

        p = lazy(factory)
        run(p, "a")
        run(p, "a")
        assert built == [1]

    def test_generate(self) -> None:
        @generate
        def signed():  # type: ignore[no-untyped-def]
            sign = yield optional(char("-"), "")
            digits = yield many1(digit)
            return int(sign + digits)

        assert run(signed(), "-42")[0].data == -42
        assert run(signed(), "7")[0].data == 7
        r, si = run(signed(), "-x")
        assert not r
        assert si.pos == 0

    def test_generate_with_arguments(self) -> None:
        @generate
        def repeated(c: str, n: int):  # type: ignore[no-untyped-def]
            for _ in range(n):
                yield char(c)
            return n

        assert run(repeated("z", 3), "zzz")[0].data == 3
        assert not run(repeated("z", 3), "zz")[0]

    def test_generate_check_after_parse(self) -> None:
        @generate
        def even_marks():  # type: ignore[no-untyped-def]
            marks = yield many(char("!"))
            if len(marks) % 2 != 0:
                yield fail("must have an even number of !s")
            return len(marks)

        assert run(even_marks(), "!!!!")[0].data == 4
        r, si = run(even_marks(), "!!!")
        assert r.msg == "must have an even number of !s"
        assert si.pos == 0
