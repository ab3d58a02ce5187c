"""
Type-directed parser lookup.

A `Registry` maps `(grammar tag, type)` to a resolver that builds the parser for that type under that grammar.
The tag is any hashable object, usually an empty class, so that one type can have different grammars:

```
class Json: ...

@register(Json, bool)
def _() -> Parser[bool]:
    return first(string("true") >> ret(True), string("false") >> ret(False))

parse(Json, int | bool)     # tries int, then bool
parse(Json, list[bool])     # many bools
parse(Json, Box[Table])     # indirection, for recursive types
```

Unions are resolved by trying each alternative in the declared order. The first that matches wins.
"""

from __future__ import annotations
from typing import Any, Callable, Generic, Hashable, TypeVar, Union, get_args, get_origin

from dataclasses import dataclass
from types import MappingProxyType, UnionType

import weftparse.const as const
from weftparse.main import log, Parser, ParseFailure, Result, StringIterator
from weftparse.combinators import ParserLike, convert_parser, fmap, many


_T = TypeVar("_T")

Resolver = Callable[[], ParserLike]
"""Builds the parser for one `(tag, type)` pair."""

GenericResolver = Callable[..., ParserLike]
"""Builds the parser for a parameterized type. Called as `resolver(registry, tag, *type_args)`."""


class DispatchKeyError(KeyError):
    """A resolver was registered twice for the same key, or there's no resolver for a key."""


@dataclass(frozen=True)
class Box(Generic[_T]):
    """
    Indirection. Holds a value that was parsed separately.

    Use it for self-referential types, e.g. a list whose values can be lists: `value = int | Box[List]`.
    """
    value: _T


def is_union(tp: Any) -> bool:
    return get_origin(tp) in (Union, UnionType)


class Registry:
    """
    Resolvers keyed by `(tag, type)`, plus generic resolvers keyed by type origin (`Box`, `list`, ...).

    Entries are meant to be added once, when a grammar is defined. Registering the same key twice raises `DispatchKeyError`.
    """

    def __init__(self) -> None:
        self._resolvers: dict[tuple[Hashable, Any], Resolver] = {}
        self.resolvers = MappingProxyType(self._resolvers)
        self._generic_resolvers: dict[Any, GenericResolver] = {}
        self.generic_resolvers = MappingProxyType(self._generic_resolvers)

        self.register_generic(Box)(_box_resolver)
        self.register_generic(list)(_list_resolver)

    def __repr__(self) -> str:
        return f"<registry of {len(self._resolvers)} resolvers, {len(self._generic_resolvers)} generic>"

    def register(self, tag: Hashable, tp: Any) -> Callable[[Resolver], Resolver]:
        """
        Decorator that registers the resolver for `tp` under `tag`.

        The resolver takes no arguments and returns the parser. Use `parse()` inside it to refer to other types,
        including `tp` itself.
        """
        key = (tag, tp)
        def decorator(resolver: Resolver) -> Resolver:
            if key in self._resolvers:
                raise DispatchKeyError(f"Collision on key: {_key_desc(tag, tp)}")
            self._resolvers[key] = resolver
            log.debug("registered parser for %s", _key_desc(tag, tp))
            return resolver
        return decorator

    def register_generic(self, origin: Any) -> Callable[[GenericResolver], GenericResolver]:
        """
        Decorator that registers the resolver for every parameterization of `origin`, under every tag.

        The resolver is called as `resolver(registry, tag, *type_args)`.
        """
        def decorator(resolver: GenericResolver) -> GenericResolver:
            if origin in self._generic_resolvers:
                raise DispatchKeyError(f"Collision on generic key: {origin!r}")
            self._generic_resolvers[origin] = resolver
            return resolver
        return decorator

    def parser_for(self, tag: Hashable, tp: Any) -> Parser[Any]:
        """
        Builds the parser for `tp` under `tag` right away.

        Raises `DispatchKeyError` if nothing can parse `tp`. That's an error in the grammar, not a parse failure.
        """
        name = _key_desc(tag, tp)
        if (resolver := self._resolvers.get((tag, tp))) is not None:
            log.debug("resolved %s", name)
            return convert_parser(resolver()).named(name)
        if is_union(tp):
            return self.variant_parser(tag, get_args(tp))
        origin = get_origin(tp)
        if origin is not None and (generic := self._generic_resolvers.get(origin)) is not None:
            log.debug("resolved %s through %r", name, origin)
            return convert_parser(generic(self, tag, *get_args(tp))).named(name)
        raise DispatchKeyError(f"No parser registered for {name}")

    def parse(self, tag: Hashable, tp: Any) -> Parser[Any]:
        """
        A parser for `tp` under `tag` that's resolved when it's first attempted.

        Because of this, resolvers can refer to types that aren't registered yet, or to themselves.
        Recursive types are parsed by recursion, so very deeply nested input can exceed `sys.getrecursionlimit()`.
        """
        resolved: list[Parser[Any]] = []
        def dispatch_parser(si: StringIterator) -> Result[Any] | ParseFailure:
            if not resolved:
                resolved.append(self.parser_for(tag, tp))
            return resolved[0].func(si)
        return Parser(dispatch_parser, _key_desc(tag, tp))

    def variant_parser(self, tag: Hashable, alternatives: tuple[Any, ...]) -> Parser[Any]:
        """
        Tries the parser of each alternative type in order. The first that succeeds wins.

        The order of the alternatives is the precedence, so put the more specific ones first.
        """
        parsers = tuple(self.parse(tag, alt) for alt in alternatives)
        desc = " | ".join(_type_desc(alt) for alt in alternatives)
        def variant(si: StringIterator) -> Result[Any] | ParseFailure:
            with si() as c:
                for p in parsers:
                    if r := p(si):
                        return c.result(r.data)
                return c.fail(f"{const.FIRST_FAILURE}: expected {desc}")
        return Parser(variant, f"{_tag_desc(tag)}:{desc}")

    def many_type(self, tag: Hashable, tp: Any) -> Parser[list[Any]]:
        """Parses zero or more of `tp`."""
        return many(self.parse(tag, tp))


def _box_resolver(registry: Registry, tag: Hashable, inner: Any) -> ParserLike:
    return fmap(Box, registry.parse(tag, inner))

def _list_resolver(registry: Registry, tag: Hashable, inner: Any) -> ParserLike:
    return registry.many_type(tag, inner)

def _type_desc(tp: Any) -> str:
    if isinstance(tp, type) and get_origin(tp) is None:
        return tp.__qualname__
    return repr(tp)

def _tag_desc(tag: Hashable) -> str:
    return tag.__qualname__ if isinstance(tag, type) else repr(tag)

def _key_desc(tag: Hashable, tp: Any) -> str:
    return f"{_tag_desc(tag)}:{_type_desc(tp)}"


registry = Registry()
"""The default registry, used by the module-level functions."""

def register(tag: Hashable, tp: Any) -> Callable[[Resolver], Resolver]:
    """`Registry.register()` on the default registry."""
    return registry.register(tag, tp)

def register_generic(origin: Any) -> Callable[[GenericResolver], GenericResolver]:
    """`Registry.register_generic()` on the default registry."""
    return registry.register_generic(origin)

def parser_for(tag: Hashable, tp: Any) -> Parser[Any]:
    """`Registry.parser_for()` on the default registry."""
    return registry.parser_for(tag, tp)

def parse(tag: Hashable, tp: Any) -> Parser[Any]:
    """`Registry.parse()` on the default registry."""
    return registry.parse(tag, tp)

def many_type(tag: Hashable, tp: Any) -> Parser[list[Any]]:
    """`Registry.many_type()` on the default registry."""
    return registry.many_type(tag, tp)
