"""
General use constants.
"""

from __future__ import annotations
from typing import Final

BLANKS: Final[frozenset[str]] = frozenset({" ", "\t", "\n", "\r"})
NEWLINES: Final[frozenset[str]] = frozenset({"\r", "\n"})
DECIMAL: Final[frozenset[str]] = frozenset("0123456789")
LOWERCASE: Final[frozenset[str]] = frozenset("abcdefghijklmnopqrstuvwxyz")
UPPERCASE: Final[frozenset[str]] = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZ")
ALPHABETIC: Final[frozenset[str]] = LOWERCASE | UPPERCASE
ALNUM: Final[frozenset[str]] = ALPHABETIC | DECIMAL
IDENTIFIER_START: Final[frozenset[str]] = ALPHABETIC | {"_"}
IDENTIFIER: Final[frozenset[str]] = ALNUM | {"_"}

DEFAULT_FAILURE: Final[str] = "parse failed"
EOF_FAILURE: Final[str] = "unexpected end of input"
FIRST_FAILURE: Final[str] = "none of the alternatives matched"
INCOMPLETE_FAILURE: Final[str] = "failed to parse all characters in input stream"
DIAGNOSE_FAILURE: Final[str] = "parsing partially succeeded but was not able to consume all input."

DEBUG_ENV_VAR: Final[str] = "WEFTPARSE_DEBUG"
LOGGER_NAME: Final[str] = "weftparse"
