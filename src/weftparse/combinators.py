"""
The combinator algebra.

Zero-argument primitives (`any_char`, `digit`, `eof`, ...) are ready-made `Parser` objects.
Parameterized primitives and combinators (`char(c)`, `string(s)`, `seq(...)`, ...) are functions that build parsers.

Wherever a parser is expected, these are also accepted:
- `str`: converted with `string(...)`
- `re.Pattern`: converted with `regex(...)`
- a parser function `(si) -> Result | ParseFailure`

```
number = fmap(int, many1(digit))
pair = bracketed("(", seq(number, seq_last(",", number)), ")")
```
"""

from __future__ import annotations
from typing import Any, Callable, Generator, Iterable, TypeVar, Union

from functools import wraps
import re

import weftparse.const as const
from weftparse.main import (
    log,
    Parser,
    ParserFunction,
    ParseFailure,
    Result,
    StringIterator,
    parser,
)


_T = TypeVar("_T")
_U = TypeVar("_U")

ParserLike = Union[Parser[Any], ParserFunction[Any], str, re.Pattern]


def convert_parser(p: ParserLike) -> Parser[Any]:
    if isinstance(p, Parser):
        return p
    elif isinstance(p, str):
        return string(p)
    elif isinstance(p, re.Pattern):
        from weftparse.general import regex
        return regex(p)
    elif callable(p):
        return Parser(p)
    else:
        raise TypeError(f"Expected a parser, a string or a pattern; received {p!r}")

def convert_parsers(parsers: Iterable[ParserLike]) -> tuple[Parser[Any], ...]:
    return tuple(convert_parser(p) for p in parsers)

def _element_factory(element: Any, args: tuple[Any, ...]) -> Callable[[], Parser[Any]]:
    """With `args`, `element` is a factory that's called on every repetition. Without, it's the parser itself."""
    if args:
        if not callable(element):
            raise TypeError(f"Arguments were given but {element!r} is not callable.")
        return lambda: convert_parser(element(*args))
    p = convert_parser(element)
    return lambda: p

def _collect(values: list[Any], yields_chars: bool) -> str | list[Any]:
    return "".join(values) if yields_chars else values

def _run_all(si: StringIterator, parsers: tuple[Parser[Any], ...]) -> list[Any] | ParseFailure:
    """Runs the parsers in order. Stops at the first failure and returns it."""
    values: list[Any] = []
    for p in parsers:
        if not (r := p(si)):
            return r
        values.append(r.data)
    return values

def _require(parsers: tuple[Any, ...]) -> None:
    if len(parsers) <= 0:
        raise ValueError("At least one parser required.")


# primitives

def char(value: str) -> Parser[str]:
    """Consumes a character that must be `value`."""
    if len(value) != 1:
        raise ValueError(f"Expected a single character; received {value!r}")
    def char_parser(si: StringIterator) -> Result[str] | ParseFailure:
        with si() as c:
            if si.character(value):
                return c.result(value)
            if si.is_eof():
                return c.fail(const.EOF_FAILURE)
            return c.fail(f"expected {value!r}")
    return Parser(char_parser, f"char({value!r})", yields_chars=True)

@parser(name="any_char", yields_chars=True)
def any_char(si: StringIterator) -> Result[str] | ParseFailure:
    """Consumes any character. Fails at the end of the input."""
    with si() as c:
        if (ch := si.take(1)) is None:
            return c.fail(const.EOF_FAILURE)
        return c.result(ch)

def pred(func: Callable[[str], bool], name: str | None = None) -> Parser[str]:
    """Consumes one character for which `func` returns true."""
    def pred_parser(si: StringIterator) -> Result[str] | ParseFailure:
        with si() as c:
            if (ch := si.take(1)) is None:
                return c.fail(const.EOF_FAILURE)
            if not func(ch):
                return c.fail(f"unexpected {ch!r}")
            return c.result(ch)
    return Parser(pred_parser, name or f"pred({getattr(func, '__name__', 'func')})", yields_chars=True)

def string(value: str) -> Parser[str]:
    """Consumes exactly `value`, one character at a time."""
    def string_parser(si: StringIterator) -> Result[str] | ParseFailure:
        with si() as c:
            if si.literal(value):
                return c.result(value)
            return c.fail(f"expected {value!r}")
    return Parser(string_parser, f"string({value!r})")

@parser(name="eof")
def eof(si: StringIterator) -> Result[None] | ParseFailure:
    """Succeeds if the input is finished."""
    with si() as c:
        if si.is_eof():
            return c.result(None)
        si.reach(si.pos + 1)
        return c.fail(const.INCOMPLETE_FAILURE)

def ret(value: _T) -> Parser[_T]:
    """Succeeds with `value` without consuming anything."""
    def ret_parser(si: StringIterator) -> Result[_T] | ParseFailure:
        return Result(value, (si.pos, si.pos))
    return Parser(ret_parser, f"ret({value!r})")

def fail(msg: str | None = None) -> Parser[Any]:
    """
    Always fails with `msg`.

    Turns a check made after a successful parse into a parse failure:
    ```
    if len(marks) % 2 != 0:
        yield fail("must have an even number of !s")
    ```
    """
    def fail_parser(si: StringIterator) -> ParseFailure:
        return ParseFailure(si.src, si.pos, msg)
    return Parser(fail_parser, "fail")


# character classes

def one_of(chars: str) -> Parser[str]:
    """Consumes one character if it's one of `chars`."""
    charset = frozenset(chars)
    return pred(lambda ch: ch in charset, f"one_of({chars!r})")

def not_of(chars: str) -> Parser[str]:
    """Consumes one character if it isn't one of `chars`."""
    charset = frozenset(chars)
    return pred(lambda ch: ch not in charset, f"not_of({chars!r})")

space = char(" ").named("space")
crlf = pred(lambda ch: ch in const.NEWLINES, "crlf")
tab = char("\t").named("tab")
blank = pred(lambda ch: ch in const.BLANKS, "blank")
digit = pred(lambda ch: ch in const.DECIMAL, "digit")
lower = pred(lambda ch: ch in const.LOWERCASE, "lower")
upper = pred(lambda ch: ch in const.UPPERCASE, "upper")
alpha = pred(lambda ch: ch in const.ALPHABETIC, "alpha")
alphanum = pred(lambda ch: ch in const.ALNUM, "alphanum")


# sequencing

def seq(*parsers: ParserLike) -> Parser[tuple[Any, ...]]:
    """
    Runs the parsers in order. All of them must succeed.

    Returns all the results as a tuple. Stops at the first failure without running the rest.
    """
    _require(parsers)
    new_parsers = convert_parsers(parsers)
    def seq_parser(si: StringIterator) -> Result[tuple[Any, ...]] | ParseFailure:
        with si() as c:
            values = _run_all(si, new_parsers)
            if isinstance(values, ParseFailure):
                return c.propagate(values)
            return c.result(tuple(values))
    return Parser(seq_parser, "seq")

def seq_first(*parsers: ParserLike) -> Parser[Any]:
    """Same as `seq()` but returns only the first result."""
    _require(parsers)
    new_parsers = convert_parsers(parsers)
    def seq_first_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            values = _run_all(si, new_parsers)
            if isinstance(values, ParseFailure):
                return c.propagate(values)
            return c.result(values[0])
    return Parser(seq_first_parser, "seq_first", yields_chars=new_parsers[0].yields_chars)

def seq_last(*parsers: ParserLike) -> Parser[Any]:
    """Same as `seq()` but returns only the last result."""
    _require(parsers)
    new_parsers = convert_parsers(parsers)
    def seq_last_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            values = _run_all(si, new_parsers)
            if isinstance(values, ParseFailure):
                return c.propagate(values)
            return c.result(values[-1])
    return Parser(seq_last_parser, "seq_last", yields_chars=new_parsers[-1].yields_chars)

def invoke(func: Callable[..., _T], *parsers: ParserLike) -> Parser[_T]:
    """
    Calls `func` with the results of the parsers, which must all succeed.

    The parsers run in the order they're given.
    """
    new_parsers = convert_parsers(parsers)
    def invoke_parser(si: StringIterator) -> Result[_T] | ParseFailure:
        with si() as c:
            values = _run_all(si, new_parsers)
            if isinstance(values, ParseFailure):
                return c.propagate(values)
            return c.result(func(*values))
    return Parser(invoke_parser, f"invoke({getattr(func, '__name__', 'func')})")

def emplace(cls: type[_T], *parsers: ParserLike) -> Parser[_T]:
    """Constructs `cls` from the results of the parsers, in order."""
    return invoke(cls, *parsers).named(f"emplace({cls.__name__})")

def fmap(func: Callable[[Any], _U], p: ParserLike) -> Parser[_U]:
    """Applies `func` to the result of `p`, if it succeeds."""
    new_parser = convert_parser(p)
    def fmap_parser(si: StringIterator) -> Result[_U] | ParseFailure:
        return new_parser(si).map(func)
    return Parser(fmap_parser, f"fmap({new_parser.name})")

def cat(*parsers: ParserLike) -> Parser[str]:
    """Runs string-yielding parsers in order and concatenates the results."""
    new_parsers = convert_parsers(parsers)
    def cat_parser(si: StringIterator) -> Result[str] | ParseFailure:
        with si() as c:
            values = _run_all(si, new_parsers)
            if isinstance(values, ParseFailure):
                return c.propagate(values)
            return c.result("".join(values))
    return Parser(cat_parser, "cat")

def bracketed(left: ParserLike, p: ParserLike, right: ParserLike) -> Parser[Any]:
    """
    Runs `left`, `p` and `right` in order and returns only the result of `p`.

    Single-character strings for `left` and `right` are matched with `char()`.
    """
    def side(x: ParserLike) -> Parser[Any]:
        return char(x) if isinstance(x, str) and len(x) == 1 else convert_parser(x)
    new_parsers = (side(left), convert_parser(p), side(right))
    def bracketed_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            values = _run_all(si, new_parsers)
            if isinstance(values, ParseFailure):
                return c.propagate(values)
            return c.result(values[1])
    return Parser(bracketed_parser, f"bracketed({new_parsers[1].name})")


# alternation

def first(*parsers: ParserLike) -> Parser[Any]:
    """
    Tries the parsers in order until one succeeds and returns its result.

    The order is binding: the first parser that matches wins, even if a later one would match more.
    If none of them match, fails with a generic message. Use `on_error()` for a better one.
    """
    _require(parsers)
    new_parsers = convert_parsers(parsers)
    def first_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            for p in new_parsers:
                if r := p(si):
                    return c.result(r.data)
            return c.fail(const.FIRST_FAILURE)
    return Parser(first_parser, "first", yields_chars=all(p.yields_chars for p in new_parsers))


# soft failure

def try_(p: ParserLike) -> Parser[Result[Any] | ParseFailure]:
    """
    Soft-fail. Always succeeds, and the result's data is the outcome of `p`.

    If `p` fails, the position is restored to where it was before the attempt.
    """
    new_parser = convert_parser(p)
    def try_parser(si: StringIterator) -> Result[Result[Any] | ParseFailure]:
        revert = si.save()
        r = new_parser(si)
        if not r:
            revert()
        return Result(r, revert.get_range())
    return Parser(try_parser, f"try({new_parser.name})")

def try_ignore(p: ParserLike) -> Parser[None]:
    """Attempts `p` and ignores the outcome."""
    return fmap(lambda _: None, try_(p))

def optional(p: ParserLike, default: Any = None) -> Parser[Any]:
    """Attempts `p`. If it fails, succeeds with `default` without consuming anything."""
    new_parser = convert_parser(p)
    def optional_parser(si: StringIterator) -> Result[Any]:
        with si() as c:
            if r := new_parser(si):
                return c.result(r.data)
            return c.result(default)
    return Parser(optional_parser, f"optional({new_parser.name})")

def lookahead(p: ParserLike) -> Parser[Any]:
    """Matches `p` without advancing."""
    new_parser = convert_parser(p)
    def lookahead_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        r = si.save().rollback_inline(new_parser(si))
        if not r:
            return r
        return Result(r.data, (si.pos, si.pos))
    return Parser(lookahead_parser, f"lookahead({new_parser.name})")

def not_followed_by(p: ParserLike) -> Parser[None]:
    """Succeeds without advancing if `p` doesn't match here. Fails if it does."""
    new_parser = convert_parser(p)
    def not_followed_by_parser(si: StringIterator) -> Result[None] | ParseFailure:
        revert = si.save()
        if revert.rollback_inline(new_parser(si)):
            return ParseFailure(si.src, si.pos, f"unexpected {new_parser.name}")
        return Result(None, (si.pos, si.pos))
    return Parser(not_followed_by_parser, f"not_followed_by({new_parser.name})")


# repetition

def _repeat(si: StringIterator, make: Callable[[], Parser[Any]], name: str) -> tuple[list[Any], ParseFailure | None]:
    """
    Attempts elements until one fails. Returns the values and the failure that ended the repetition.

    An element that succeeds without consuming anything also ends the repetition, and its value is dropped.
    """
    values: list[Any] = []
    while True:
        start = si.pos
        r = make()(si)
        if not r:
            return values, r
        if si.pos == start:
            log.debug("%s: element matched without consuming at %d; stopping", name, start)
            return values, None
        values.append(r.data)

def many(element: Any, *args: Any) -> Parser[Any]:
    """
    Parses zero or more of the element. Always succeeds.

    `element` is a parser, or a parser factory that's called with `args` on every repetition:
    ```
    many(digit)
    many(char, "!")
    ```

    Character-yielding elements are collected into a `str`; anything else into a `list`.
    """
    make = _element_factory(element, args)
    template = make()
    name = f"many({template.name})"
    def many_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            values, _ = _repeat(si, make, name)
            return c.result(_collect(values, template.yields_chars))
    return Parser(many_parser, name)

def many1(element: Any, *args: Any) -> Parser[Any]:
    """
    Parses one or more of the element. Same as `many()` otherwise.

    If there's not even one, fails with the element's failure.
    """
    make = _element_factory(element, args)
    template = make()
    name = f"many1({template.name})"
    def many1_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            values, failure = _repeat(si, make, name)
            if not values:
                if failure is None:
                    return c.fail(f"expected at least one {template.name}")
                return c.propagate(failure)
            return c.result(_collect(values, template.yields_chars))
    return Parser(many1_parser, name)

def many_exhaust(element: Any, *args: Any) -> Parser[Any]:
    """
    Same as `many()`, but must consume all of the input.

    If input is left over, the element is run once more so that its failure points at what couldn't be parsed.
    This gives better messages than `exhaust(many(...))`.
    """
    make = _element_factory(element, args)
    template = make()
    name = f"many_exhaust({template.name})"
    def many_exhaust_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            values, _ = _repeat(si, make, name)
            if si.is_eof():
                return c.result(_collect(values, template.yields_chars))
            if not (r := make()(si)):
                return c.propagate(r)
            return c.fail(const.INCOMPLETE_FAILURE)
    return Parser(many_exhaust_parser, name)

def interleave_first(f: ParserLike, g: ParserLike, sep_required: bool = True) -> Parser[Any]:
    """
    Parses `g f g f g f` and returns the `f` results.

    If `sep_required` is false, each `g` is optional.
    """
    element = convert_parser(f)
    sep = convert_parser(g) if sep_required else try_ignore(g)
    return many(seq_last(sep, element)).named(f"interleave_first({element.name})")

def interleave_last(f: ParserLike, g: ParserLike, sep_required: bool = True) -> Parser[Any]:
    """
    Parses `f g f g f g` and returns the `f` results.

    If `sep_required` is false, each `g` is optional.
    """
    element = convert_parser(f)
    sep = convert_parser(g) if sep_required else try_ignore(g)
    return many(seq_first(element, sep)).named(f"interleave_last({element.name})")

def interleave(f: ParserLike, g: ParserLike, sep_required: bool = True) -> Parser[Any]:
    """
    Parses `f g f g f` and returns the `f` results.

    If `sep_required` is true, there must be at least one `f`, and an `f` must follow every `g`.
    """
    element = convert_parser(f)
    pairs = interleave_last(element, g, sep_required)
    if not sep_required:
        # the optional separators already let `interleave_last` pick up the final element
        return pairs.named(f"interleave({element.name})")
    def interleave_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            if not (r := pairs(si)):
                return c.propagate(r)
            if not (last := element(si)):
                return c.propagate(last)
            return c.result(r.data + last.data if element.yields_chars else [*r.data, last.data])
    return Parser(interleave_parser, f"interleave({element.name})")

# checks and messages

def exhaust(p: ParserLike) -> Parser[Any]:
    """Runs `p` and then requires that all of the input has been consumed."""
    new_parser = convert_parser(p)
    return seq_first(new_parser, eof).named(f"exhaust({new_parser.name})")

def on_error(p: ParserLike, msg: str) -> Parser[Any]:
    """Replaces the message of any failure from `p`. The reported position still comes from the farthest position."""
    new_parser = convert_parser(p)
    def on_error_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        if r := new_parser(si):
            return r
        return r.with_msg(msg)
    return Parser(on_error_parser, new_parser.name, yields_chars=new_parser.yields_chars)

def diagnose(p: ParserLike, expected: ParserLike) -> Parser[Any]:
    """
    Runs `p`. If it succeeds but leaves input behind, runs `expected` there.

    `expected` should be the parser that would be expected to match the remaining input,
    so that its failure gives a targeted message at the right place.
    If `expected` succeeds anyway, fails with a generic message.
    """
    new_parser = convert_parser(p)
    expected_parser = convert_parser(expected)
    def diagnose_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            if not (r := new_parser(si)):
                return c.propagate(r)
            if si.is_eof():
                return c.result(r.data)
            si.reach(si.pos + 1)
            if not (e := expected_parser(si)):
                return c.propagate(e)
            return c.fail(const.DIAGNOSE_FAILURE)
    return Parser(diagnose_parser, f"diagnose({new_parser.name})")

def lift(outcome: Result[_T] | ParseFailure) -> Parser[_T]:
    """Turns an outcome computed outside of parsing into a parser that succeeds or fails accordingly, without consuming."""
    def lift_parser(si: StringIterator) -> Result[_T] | ParseFailure:
        if outcome:
            return Result(outcome.data, (si.pos, si.pos))
        return ParseFailure(si.src, si.pos, outcome.msg)
    return Parser(lift_parser, "lift")

def unwrap(p: ParserLike) -> Parser[Any]:
    """Runs `p`, whose data must be an outcome, and succeeds or fails with that outcome."""
    new_parser = convert_parser(p)
    def unwrap_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        with si() as c:
            if not (r := new_parser(si)):
                return c.propagate(r)
            inner = r.data
            if not isinstance(inner, (Result, ParseFailure)):
                raise TypeError(f"unwrap() expected an outcome from {new_parser.name}; received {inner!r}")
            if not inner:
                return c.fail(inner.msg)
            return c.result(inner.data)
    return Parser(unwrap_parser, f"unwrap({new_parser.name})")


# construction

def lazy(factory: Callable[[], ParserLike], name: str | None = None) -> Parser[Any]:
    """
    Defers building a parser until it's first attempted. For recursive grammars.

    ```
    value = first(number, lazy(lambda: array))
    array = bracketed("[", interleave(value, ","), "]")
    ```

    Nesting is parsed by recursion, so very deep input can exceed `sys.getrecursionlimit()`.
    Each level of a grammar like the one above costs a handful of frames.
    """
    built: list[Parser[Any]] = []
    def lazy_parser(si: StringIterator) -> Result[Any] | ParseFailure:
        if not built:
            built.append(convert_parser(factory()))
        # this unit restores the position on failure
        return built[0].func(si)
    return Parser(lazy_parser, name or getattr(factory, "__name__", "lazy"))

def generate(func: Callable[..., Generator[ParserLike, Any, _T]]) -> Callable[..., Parser[_T]]:
    """
    Decorator for writing a parser as a generator.

    Each `yield` runs a parser and evaluates to its result. The first failure aborts the whole parser.
    The generator's return value becomes the result. The decorated function returns a new `Parser` when called.

    ```
    @generate
    def greeting():
        h = yield one_of("hH")
        yield "ello"
        yield many1(space)
        yield "world" if h == "h" else "World"
        return "Hello, World!"

    greeting()(si)
    ```
    """
    @wraps(func)
    def factory(*args: Any, **kwargs: Any) -> Parser[_T]:
        def generated_parser(si: StringIterator) -> Result[_T] | ParseFailure:
            with si() as c:
                gen = func(*args, **kwargs)
                try:
                    step = next(gen)
                    while True:
                        if not (r := convert_parser(step)(si)):
                            gen.close()
                            return c.propagate(r)
                        step = gen.send(r.data)
                except StopIteration as stop:
                    return c.result(stop.value)
        return Parser(generated_parser, func.__name__)
    return factory
