"""
Builtin parsers that work directly against the `StringIterator` instead of being composed from smaller parsers.
"""

from __future__ import annotations

import re

from weftparse.main import Parser, ParseFailure, Result, StringIterator, parser
from weftparse.combinators import first


@parser(name="blanks")
def blanks(si: StringIterator) -> Result[str]:
    """Consumes zero or more blank characters (space, tab, CR, LF). Always succeeds."""
    with si() as c:
        si.blanks()
        return c.result(c.get_string())

@parser(name="identifier")
def identifier(si: StringIterator) -> Result[str] | ParseFailure:
    """`[A-Za-z_][A-Za-z0-9_]*`"""
    with si() as c:
        if (name := si.identifier()) is None:
            return c.fail("expected identifier")
        return c.result(name)

def _quoted(quote: str, desc: str) -> Parser[str]:
    def quoted_parser(si: StringIterator) -> Result[str] | ParseFailure:
        with si() as c:
            if (contents := si.quoted(quote)) is None:
                return c.fail(f"expected {desc}")
            return c.result(contents)
    return Parser(quoted_parser, desc)

double_quoted_str = _quoted('"', "double-quoted string")
"""`"..."`. Returns the contents. There are no escapes."""

single_quoted_str = _quoted("'", "single-quoted string")
"""`'...'`. Returns the contents. There are no escapes."""

quoted_str = first(double_quoted_str, single_quoted_str).named("quoted string")
"""Either a double-quoted or a single-quoted string."""

def regex(pattern: str | re.Pattern, flags: int | re.RegexFlag = 0) -> Parser[re.Match[str]]:
    """Matches the regex at the current position. Returns the match object."""
    compiled = re.compile(pattern, flags)
    def regex_parser(si: StringIterator) -> Result[re.Match[str]] | ParseFailure:
        with si() as c:
            if (m := si.regex(compiled)) is None:
                return c.fail(f"expected match for /{compiled.pattern}/")
            return c.result(m)
    return Parser(regex_parser, f"regex({compiled.pattern!r})")
