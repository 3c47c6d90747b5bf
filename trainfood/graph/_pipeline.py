"""
Pipelines — sugar over nodnod.

A pipeline is a target node compiled once; its dependencies are discovered
from ``__compose__`` signatures and independent nodes run concurrently.
Inputs are injected by their runtime type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast
from collections.abc import Callable, Coroutine

from nodnod import Scope, Value, EventLoopAgent, Node


# ═══════════════════════════════════════════════════════════════════════════════
# TypedScope
# ═══════════════════════════════════════════════════════════════════════════════

class TypedScope:
    """Type-safe wrapper around nodnod.Scope."""

    __slots__ = ("_scope",)

    def __init__(self, scope: Scope | None = None, detail: str = "scope") -> None:
        self._scope = scope if scope is not None else Scope(detail=detail)

    @property
    def inner(self) -> Scope:
        return self._scope

    def inject[T](self, typ: type[T], value: T) -> TypedScope:
        self._scope.push(Value(typ, value))
        return self

    def get[T](self, typ: type[T]) -> T:
        result = self._scope.get(typ)
        if result is None:
            raise KeyError(f"{typ.__name__} not found in scope")
        return cast(T, result.value)

    async def __aenter__(self) -> TypedScope:
        await self._scope.__aenter__()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._scope.__aexit__(*args)


# ═══════════════════════════════════════════════════════════════════════════════
# Pipeline — compiled target
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(slots=True, frozen=True)
class Pipeline[T]:
    """
    Pre-compiled graph for repeated execution.

        quote = pipeline(QuoteNode)
        node = await quote(draft, deps)

    Exceptions raised inside a node's ``__compose__`` propagate to the caller.
    """

    target: type[T]
    _agent: EventLoopAgent

    async def __call__(self, *inputs: object) -> T:
        async with TypedScope(detail=self.target.__name__) as scope:
            for value in inputs:
                scope.inject(cast(type[Any], type(value)), value)

            run_method = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(self._agent, "run"),
            )
            await run_method(scope.inner, {})

            return scope.get(self.target)


def pipeline[T](target: type[T]) -> Pipeline[T]:
    """Compile ``target`` and everything it depends on."""
    all_nodes: set[type[Node[Any, Any]]] = {cast(type[Node[Any, Any]], target)}
    return Pipeline(target=target, _agent=EventLoopAgent.build(all_nodes))


__all__ = ("TypedScope", "Pipeline", "pipeline")
