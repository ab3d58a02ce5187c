"""
The buffer, outcomes and the `Parser` unit that every other module builds on.
"""

from __future__ import annotations
from typing import overload, Any, Self, Literal, TypeVar, Generic, Final, Callable, Union
from types import TracebackType

import logging
import os
import re

import weftparse.const as const


log = logging.getLogger(const.LOGGER_NAME)

debug: bool = os.environ.get(const.DEBUG_ENV_VAR, "") not in ("", "0")
"""When true, every `Parser` attempt is logged at DEBUG level. Initialized from the `WEFTPARSE_DEBUG` environment variable."""


_T = TypeVar("_T")
_U = TypeVar("_U")
_DataT = TypeVar("_DataT")
_DataCovT = TypeVar("_DataCovT", covariant=True)



class PosNote:
    """
    Positioned note.

    For `ParseError`s and `ParseFailure`s.
    """
    def __init__(self, pos: int, msg: str | None = None) -> None:
        self.pos: int = pos
        self.msg: str | None = msg

    def __repr__(self) -> str:
        return f"PosNote({self.pos}, {self.msg!r})"

class ParseFailure:
    """
    Returned by a parser that didn't match. Falsy, so parsers can be tested with `if r := p(si):`.

    Use `error()` or `unwrap()` to turn it into a `ParseError`.
    """

    def __init__(self, src: str, pos: int, msg: str | None = None, notes: list[PosNote] | None = None) -> None:
        self.src: str = src
        self.pos: int = pos
        self.msg: str = const.DEFAULT_FAILURE if msg is None else msg
        self.notes: list[PosNote] = [] if notes is None else notes
        """Context notes, innermost first. The last one is shown on top."""

    def prepend_notes(self, notes: list[PosNote]) -> Self:
        """Puts `notes` above the existing ones. `notes` is in the same innermost-first order."""
        self.notes = notes + self.notes
        return self

    def with_msg(self, msg: str) -> ParseFailure:
        """A copy with a different message."""
        return ParseFailure(self.src, self.pos, msg, list(self.notes))

    def map(self, func: Callable[[Any], Any]) -> Self:
        return self

    def unwrap(self) -> Any:
        """Raises this failure as a `ParseError`."""
        raise self.error()

    def error(self) -> ParseError:
        return ParseError(self.src, self.pos, self.msg, self.notes)

    def __bool__(self) -> Literal[False]:
        return False

    def __repr__(self) -> str:
        return f"<failure {self.pos}: {self.msg!r}>"

class ParseError(Exception):
    """
    A failure turned into an exception. Grammars report failures as `ParseFailure` values;
    this only appears when a caller asks for it, or when a parser raises `Checkpoint.error()`.

    Each position is attached with `add_note()`, showing the line, the column and a caret under the offending character.
    """

    def __init__(self, src: str, pos: int, msg: str | None = None, notes: list[PosNote] | None = None) -> None:
        if msg is None:
            super().__init__()
        else:
            super().__init__(msg)
        self.src = src
        self.pos = pos
        self.msg = msg
        self.append_pos_note(pos)
        for note in reversed(notes or []):
            self.append_existing_note(note)

    def append_pos_note(self, pos: int, msg: str | None = None) -> Self:
        note: list[str] = [] if msg is None else [msg]

        pos = min(pos, len(self.src))
        line = self.src.count("\n", 0, pos) + 1
        column = pos - self.src.rfind("\n", 0, pos) # rfind returns -1 on the first line
        note.append(f"At position {pos} (line {line}, column {column})")

        lines = self.src.splitlines()
        if line <= len(lines) and column <= len(line_str := lines[line-1]):
            # at most 40 characters of context around the caret
            start = max(0, column - 20)
            note.append(f"{line_str[start:start+40]}\n{' '*(column-1-start)}^")
        self.add_note("\n".join(note))
        return self

    def append_existing_note(self, note: PosNote) -> Self:
        return self.append_pos_note(note.pos, note.msg)

class Result(Generic[_DataCovT]):
    """
    When returned from a parser, indicates that it has succeeded. Contains the parsed data.

    ```
    r = parser(si)
    if r:
        output = r.data
    else:
        ... # failed
    ```

    `pos` is the range of input consumed, if known.
    """
    def __init__(self, data: _DataCovT, pos: tuple[int, int] | None = None) -> None:
        self.data: Final[_DataCovT] = data
        self.pos: Final[tuple[int, int] | None] = pos

    def map(self, func: Callable[[_DataCovT], _U]) -> Result[_U]:
        """Creates a copy of this result with `func` applied to the data."""
        return Result(func(self.data), self.pos)

    def unwrap(self) -> _DataCovT:
        return self.data

    def __bool__(self) -> Literal[True]:
        return True

    def __repr__(self) -> str:
        if self.pos is None:
            return f"<result {self.data!r}>"
        return f"<result {self.pos[0]}..{self.pos[1]} {self.data!r}>"


Outcome = Union[Result[_T], ParseFailure]
"""What every parser returns: a truthy `Result` or a falsy `ParseFailure`."""



class StringIterator:
    """
    The buffer a parse runs against.

    Holds the text and the current position. Also tracks `farthest`, the greatest position any attempt has reached,
    including attempts that were later backtracked. It never decreases and is only used for diagnostics.
    """
    def __init__(self, src: str, starting_pos: int = 0) -> None:
        assert 0 <= starting_pos <= len(src), "Starting position is out of range."
        self.src: Final[str] = src
        """The string that's being parsed."""
        self._pos: int = starting_pos
        self.farthest: int = starting_pos
        """The farthest position reached so far."""

    @property
    def pos(self) -> int:
        """The current position."""
        return self._pos

    @pos.setter
    def pos(self, value: int) -> None:
        assert 0 <= value <= len(self.src), f"Position {value} is out of range."
        self._pos = value
        if value > self.farthest:
            self.farthest = value

    def reach(self, pos: int) -> None:
        """Records that an attempt examined input up to `pos` without consuming it."""
        if pos > self.farthest:
            self.farthest = min(pos, len(self.src))

    def __repr__(self) -> str:
        return f"StringIterator(pos={self._pos}, farthest={self.farthest}, remaining={self.remaining()[:20]!r})"

    def has_chars(self, amount: int) -> bool:
        """Whether there are at least that many characters left."""
        return self._pos+amount <= len(self.src)

    def is_eof(self) -> bool:
        """Whether the end of the input has been reached. The opposite of `__bool__()`"""
        return self._pos >= len(self.src)

    def __bool__(self) -> bool:
        """Whether there are any characters left to parse. The opposite of `is_eof()`"""
        return self._pos < len(self.src)

    def remaining(self) -> str:
        """The input that hasn't been consumed yet."""
        return self.src[self._pos:]

    def peek(self, amount: int = 1) -> str | None:
        """The next `amount` characters, or `None` if the input is shorter. Doesn't consume."""
        if not self.has_chars(amount):
            return None
        return self.src[self._pos:self._pos+amount]

    def take(self, amount: int = 1) -> str | None:
        """Consumes and returns the next `amount` characters. Returns `None` without consuming if the input is shorter."""
        if not self.has_chars(amount):
            return None
        start_pos = self._pos
        self.pos = start_pos + amount
        return self.src[start_pos:self._pos]

    def advance(self, amount: int) -> None:
        """Commits `amount` characters as consumed."""
        assert amount >= 0 and self.has_chars(amount), f"Cannot advance by {amount}."
        self.pos = self._pos + amount

    def checkpoint(self, *, note: str | None = None) -> Checkpoint:
        """A `Checkpoint` at the current position. Nested ones should come from `Checkpoint.sub_checkpoint()`."""
        return Checkpoint(self, note=note)

    def __call__(self, *, note: str | None = None) -> Checkpoint:
        """Same as `StringIterator.checkpoint()`, so that parsers can write `with si() as c:`."""
        return Checkpoint(self, note=note)

    def save(self) -> Savepoint:
        return Savepoint(self)

    def character(self, value: str) -> bool:
        """
        Consumes `value` if it's the next character.

        A mismatch doesn't advance, but still counts as having reached past the examined character.
        """
        if not self.has_chars(1):
            return False
        if self.src[self._pos] == value:
            self.pos = self._pos + 1
            return True
        else:
            self.reach(self._pos + 1)
            return False

    def literal(self, value: str) -> bool:
        """
        Consumes `value` if the input continues with it. Compared one character at a time,
        so that on a mismatch the farthest position records the first character that differed.
        """
        src = self.src
        start = self._pos
        for i, expected in enumerate(value):
            index = start + i
            if index >= len(src):
                self.reach(index)
                return False
            if src[index] != expected:
                self.reach(index + 1)
                return False
        self.pos = start + len(value)
        return True

    def regex(self, compiled: re.Pattern[str]) -> re.Match[str] | None:
        """Matches the pattern at the current position and consumes the match."""
        m = compiled.match(self.src, self._pos)
        if m is not None:
            self.pos = m.end()
        return m

    def blanks(self) -> str:
        """Matches zero or more blank characters and returns them."""
        start = end = self._pos
        while end < len(self.src) and self.src[end] in const.BLANKS:
            end += 1
        self.pos = end
        return self.src[start:end]

    def identifier(self) -> str | None:
        """Matches `[A-Za-z_][A-Za-z0-9_]*`. Returns `None` without advancing if there's no identifier here."""
        src = self.src
        start = end = self._pos
        if end >= len(src) or src[end] not in const.IDENTIFIER_START:
            return None
        while end < len(src) and src[end] in const.IDENTIFIER:
            end += 1
        self.pos = end
        return src[start:end]

    def quoted(self, quote: str) -> str | None:
        """
        Matches a string enclosed in `quote` characters and returns the contents, without the quotes.

        There are no escapes. Returns `None` without advancing if there's no opening quote or no closing quote.
        """
        src = self.src
        start = self._pos
        if start >= len(src) or src[start] != quote:
            return None
        close = src.find(quote, start + 1)
        if close == -1:
            return None
        self.pos = close + 1
        return src[start+1:close]


class Savepoint:
    """
    A bare saved position. Lighter than a `Checkpoint`.

    Nothing is rolled back automatically. Call the savepoint to go back to it.
    """
    def __init__(self, si: StringIterator) -> None:
        self.pos: Final[int] = si.pos
        self.si: Final[StringIterator] = si

    def __call__(self) -> None:
        self.si.pos = self.pos

    def rollback(self) -> None:
        self.si.pos = self.pos

    def get_range(self) -> tuple[int, int]:
        return (self.pos, self.si.pos)

    def get_string(self) -> str:
        return self.si.src[self.pos:self.si.pos]

    def guard(self, value: _T) -> _T:
        """
        Rolls back if `value` is falsy, then returns it.

        ```
        r = si.save().guard(number(si))
        ```
        """
        if not value:
            self.rollback()
        return value

    def rollback_inline(self, value: _T) -> _T:
        """Rolls back unconditionally, then returns `value`."""
        self.rollback()
        return value


class Checkpoint:
    """
    A saved position that's restored when the `with` block exits, unless the checkpoint was committed.

    ```
    with si() as c:
        if not si.character("("):
            return c.fail("expected '('")       # rolls back
        if not (r := expr(si)):
            return c.propagate(r)               # rolls back, keeps the failure's message
        return c.result(r.data)                 # commits
    ```

    `raise c.error(...)` also rolls back, and the checkpoint's notes are added to the error.
    """
    def __init__(self, si: StringIterator, *, parent_checkpoint: Checkpoint | None = None, note: str | None = None) -> None:
        self.pos: Final[int] = si.pos
        """Where the checkpoint was made."""
        self.si: Final[StringIterator] = si
        self.parent_checkpoint: Final[Checkpoint | None] = parent_checkpoint

        self.notes: list[PosNote] = []
        """Context notes, added to any failure or error leaving this checkpoint."""
        self.committed: bool = False

        if note is not None:
            self.note(note)

    def commit(self) -> None:
        self.committed = True

    def is_committed(self) -> bool:
        """A sub-checkpoint also counts as committed when its parent is."""
        if self.committed:
            return True
        return self.parent_checkpoint is not None and self.parent_checkpoint.is_committed()

    def rollback(self) -> None:
        """Goes back to the saved position, committed or not."""
        self.si.pos = self.pos

    def rollback_if_uncommited(self) -> None:
        if not self.is_committed():
            self.rollback()

    def note(self, msg: str | None = None) -> None:
        """Records a context note at the current position."""
        self.notes.append(PosNote(self.si.pos, msg))

    def get_range(self) -> tuple[int, int]:
        return (self.pos, self.si.pos)

    def get_string(self) -> str:
        """The input consumed since the checkpoint."""
        return self.si.src[self.pos:self.si.pos]

    def result(self, data: _DataT) -> Result[_DataT]:
        """Commits. The result spans from the checkpoint to the current position."""
        self.committed = True
        return Result(data, self.get_range())

    def error(self, msg: str | None = None, notes: list[PosNote] | None = None) -> ParseError:
        """A `ParseError` at the current position. Meant to be raised inside the `with` block."""
        self.committed = False
        # the checkpoint's own notes are added by `__exit__()`
        return ParseError(self.si.src, self.si.pos, msg, notes)

    def fail(self, msg: str | None = None, notes: list[PosNote] | None = None) -> ParseFailure:
        """Uncommits. The failure is positioned at the current position."""
        self.committed = False
        return ParseFailure(self.si.src, self.si.pos, msg, notes).prepend_notes(self.notes)

    def fail_start(self, msg: str | None = None, notes: list[PosNote] | None = None) -> ParseFailure:
        """Uncommits. The failure is positioned at the checkpoint."""
        self.committed = False
        return ParseFailure(self.si.src, self.pos, msg, notes).prepend_notes(self.notes)

    def propagate(self, failure: ParseFailure) -> ParseFailure:
        """Uncommits and passes on a sub-parser's failure, with this checkpoint's notes on top."""
        self.committed = False
        return failure.prepend_notes(self.notes)

    def add_notes_to_error(self, error: ParseError) -> None:
        for note in reversed(self.notes):
            error.append_existing_note(note)

    def __enter__(self) -> Self:
        return self

    @overload
    def __exit__(self, exctype: None, exc: None, traceback: None) -> Literal[False]: ...
    @overload
    def __exit__(self, exctype: type[BaseException], exc: BaseException, traceback: TracebackType) -> Literal[False]: ...

    def __exit__(
        self,
        exctype: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc is None:
            self.rollback_if_uncommited()
        else:
            if isinstance(exc, ParseError):
                self.add_notes_to_error(exc)
            self.rollback()
        return False

    def sub_checkpoint(self, *, note: str | None = None) -> Checkpoint:
        """A nested checkpoint that isn't rolled back if this one is committed."""
        return Checkpoint(self.si, parent_checkpoint=self, note=note)



ParserFunction = Callable[[StringIterator], Outcome[_T]]


class Parser(Generic[_DataCovT]):
    """
    One parsing unit. Wraps a parser function and enforces the execution contract:

    - The function returns a `Result` or a `ParseFailure`. Anything else is a `TypeError`.
    - On failure, the position is restored to where the attempt started. The farthest position is kept.

    Parsers hold no state between attempts, so the same unit can be attempted any number of times.

    ```
    digits = many1(digit)
    r = digits(StringIterator("123a"))
    ```
    """

    def __init__(self, func: ParserFunction[_DataCovT], name: str | None = None, *, yields_chars: bool = False) -> None:
        """
        `func`: The parser function.
        `name`: Used in debug logs and reprs. Defaults to the function's name.
        `yields_chars`: Whether the parser produces single characters. Repetitions of such parsers collect into a `str`.
        """
        self.func: Final[ParserFunction[_DataCovT]] = func
        self.name: Final[str] = getattr(func, "__name__", repr(func)) if name is None else name
        self.yields_chars: Final[bool] = yields_chars

    def attempt(self, si: StringIterator) -> Result[_DataCovT] | ParseFailure:
        """Runs the parser once against `si`. Same as `Parser.__call__()`."""
        start = si.pos
        if debug:
            log.debug("trying %s at %d", self.name, start)
        outcome = self.func(si)
        if isinstance(outcome, Result):
            if debug:
                log.debug("matched %s at %d..%d", self.name, start, si.pos)
            return outcome
        if isinstance(outcome, ParseFailure):
            si.pos = start
            if debug:
                log.debug("failed %s at %d (farthest %d): %s", self.name, start, si.farthest, outcome.msg)
            return outcome
        raise TypeError(f"Parser {self.name!r} returned {outcome!r}; expected a Result or a ParseFailure.")

    # calling a parser adds no frame beyond `attempt`
    __call__ = attempt

    def named(self, name: str) -> Parser[_DataCovT]:
        """Creates a copy of this parser with the provided name."""
        return Parser(self.func, name, yields_chars=self.yields_chars)

    def map(self, func: Callable[[_DataCovT], _U]) -> Parser[_U]:
        """Same as `fmap(func, self)`."""
        from weftparse.combinators import fmap
        return fmap(func, self)

    def __or__(self, other: Any) -> Parser[Any]:
        """Same as `first(self, other)`."""
        from weftparse.combinators import first
        return first(self, other)

    def __rshift__(self, other: Any) -> Parser[Any]:
        """Same as `seq_last(self, other)`."""
        from weftparse.combinators import seq_last
        return seq_last(self, other)

    def __lshift__(self, other: Any) -> Parser[_DataCovT]:
        """Same as `seq_first(self, other)`."""
        from weftparse.combinators import seq_first
        return seq_first(self, other)

    def __repr__(self) -> str:
        return f"<parser {self.name}>"


@overload
def parser(func: ParserFunction[_T], /) -> Parser[_T]: ...
@overload
def parser(*, name: str | None = None, yields_chars: bool = False) -> Callable[[ParserFunction[_T]], Parser[_T]]: ...

def parser(
    func: ParserFunction[_T] | None = None,
    /,
    *,
    name: str | None = None,
    yields_chars: bool = False,
) -> Parser[_T] | Callable[[ParserFunction[_T]], Parser[_T]]:
    """
    Decorator that turns a parser function into a `Parser`.

    ```
    @parser
    def sign(si: StringIterator) -> Result[int] | ParseFailure:
        with si() as c:
            if si.character("-"):
                return c.result(-1)
            return c.fail("Expected '-'.")
    ```
    """
    if func is not None:
        return Parser(func, name, yields_chars=yields_chars)
    def decorator(func: ParserFunction[_T]) -> Parser[_T]:
        return Parser(func, name, yields_chars=yields_chars)
    return decorator
