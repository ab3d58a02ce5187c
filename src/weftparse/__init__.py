"""
Parser combinators for writing recursive-descent parsers by hand.

See the objects for more explanations.

See the `weftparse.combinators` module for the building blocks, and `weftparse.dispatch` for type-directed parsers.

Defining parsers:
```
digits = many1(digit)
pair = bracketed("(", seq(digits, seq_last(",", digits)), ")")

@generate
def greeting():
    h = yield one_of("hH")
    yield "ello"
    return h

@parser
def foo(si: StringIterator) -> Result[int] | ParseFailure:
    with si() as c:
        if si.literal("abc"):
            return c.result(10)             # success
        return c.fail("Fail reason here.")  # fail
```

Using parsers:
```
result = run_parser("input.txt", "(12,34)", pair)
if result:
    ... # `result` is a `Result` object
else:
    ... # `result` is a `ParseFailure` object, `result.msg` is "input.txt:error:<line>:<col> <reason>"
```
"""

import weftparse.const as const
import weftparse.main
from weftparse.main import (
    PosNote,
    ParseFailure,
    ParseError,
    Result,
    Outcome,
    StringIterator,
    Savepoint,
    Checkpoint,
    Parser,
    parser,
)
from weftparse.combinators import (
    convert_parser,
    char,
    any_char,
    pred,
    string,
    eof,
    ret,
    fail,
    one_of,
    not_of,
    space,
    crlf,
    tab,
    blank,
    digit,
    lower,
    upper,
    alpha,
    alphanum,
    seq,
    seq_first,
    seq_last,
    invoke,
    emplace,
    fmap,
    cat,
    bracketed,
    first,
    try_,
    try_ignore,
    optional,
    lookahead,
    not_followed_by,
    many,
    many1,
    many_exhaust,
    interleave_first,
    interleave_last,
    interleave,
    exhaust,
    on_error,
    diagnose,
    lift,
    unwrap,
    lazy,
    generate,
)
from weftparse.general import (
    blanks,
    identifier,
    double_quoted_str,
    single_quoted_str,
    quoted_str,
    regex,
)
from weftparse.dispatch import (
    DispatchKeyError,
    Box,
    Registry,
    register,
    register_generic,
    parser_for,
    parse,
    many_type,
)
from weftparse.runner import (
    ErrorPos,
    RunFailure,
    run_parser,
    parse_from_string,
)
