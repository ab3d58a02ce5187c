"""
Running a parser over a whole input, and turning a failed run into a diagnostic.

```
r = run_parser("config.txt", text, grammar)
if r:
    config = r.data
else:
    print(r.msg)    # config.txt:error:3:14 expected ','
```
"""

from __future__ import annotations
from typing import Any, Hashable

from dataclasses import dataclass

from weftparse.main import log, ParseFailure, PosNote, Result, StringIterator
from weftparse.combinators import ParserLike, convert_parser, exhaust
import weftparse.dispatch as dispatch


@dataclass(frozen=True)
class ErrorPos:
    """A 1-based line and column."""
    line: int
    col: int

    @staticmethod
    def from_index(src: str, index: int) -> ErrorPos:
        """Counts the newlines before `index`. Out of range indices are clamped."""
        index = max(0, min(index, len(src)))
        line = src.count("\n", 0, index) + 1
        col = index - src.rfind("\n", 0, index) # rfind returns -1 on the first line
        return ErrorPos(line, col)


class RunFailure(ParseFailure):
    """
    The failure of a whole run.

    `msg` is the diagnostic: `<source_name>:error:<line>:<col> <reason>`.
    """

    def __init__(self, src: str, pos: int, source_name: str, reason: str, notes: list[PosNote] | None = None) -> None:
        error_pos = ErrorPos.from_index(src, pos)
        self.source_name: str = source_name
        self.reason: str = reason
        """The message of the failure, without the location."""
        self.line: int = error_pos.line
        self.col: int = error_pos.col
        super().__init__(src, pos, f"{source_name}:error:{error_pos.line}:{error_pos.col} {reason}", notes)


def run_parser(source_name: str, text: str, p: ParserLike) -> Result[Any] | ParseFailure:
    """
    Runs `p` once against `text`.

    On failure, the location is taken from the farthest position that any attempt reached,
    which is usually more useful than where the last attempt happened to fail.
    `source_name` is only used in the diagnostic.
    """
    si = StringIterator(text)
    if r := convert_parser(p)(si):
        return r
    # the farthest position is one past the character that was being examined
    index = max(si.farthest - 1, 0)
    log.debug("%s: failed with farthest position %d: %s", source_name, si.farthest, r.msg)
    return RunFailure(text, index, source_name, r.msg, r.notes)


def parse_from_string(
    tag: Hashable,
    tp: Any,
    source_name: str,
    text: str,
    *,
    registry: dispatch.Registry | None = None,
) -> Result[Any] | ParseFailure:
    """
    Parses `text` as a `tp` under the grammar `tag`. The whole input must be consumed.

    Uses the default registry unless one is given.
    """
    reg = dispatch.registry if registry is None else registry
    return run_parser(source_name, text, exhaust(reg.parse(tag, tp)))
