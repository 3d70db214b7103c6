"""Composite-token registry — resolution types and dependency ordering."""
from __future__ import annotations

from typing import TYPE_CHECKING

from .exceptions import CircularBasketError

if TYPE_CHECKING:
    from .config import CompositeTokenConfig

# Strategy A: token.toAssets(oneUnit, FLOOR) returns the per-unit basket.
BASKET_DIRECT = "basket-direct"
# Strategy B: token.main() -> basketHandler() -> quote(oneUnit, FLOOR).
BASKET_INDIRECT = "basket-indirect"

COMPOSITE_TYPES = (BASKET_DIRECT, BASKET_INDIRECT)

CompositeKey = tuple[int, str]


def composite_key(chain_id: int, address: str) -> CompositeKey:
    return (chain_id, address.lower())


def order_composites(
    tokens: tuple[CompositeTokenConfig, ...] | list[CompositeTokenConfig],
) -> list[CompositeTokenConfig]:
    """Return composites in dependency order (dependencies first).

    Ordering is a stable topological sort over the declared ``depends_on``
    edges: among tokens whose dependencies are satisfied, declaration order
    wins. Raises CircularBasketError on a cycle or on a dependency that is
    not itself a registered composite on the same chain.
    """
    by_key: dict[CompositeKey, CompositeTokenConfig] = {}
    for token in tokens:
        by_key[composite_key(token.chain_id, token.address)] = token

    for token in tokens:
        for dep in token.depends_on:
            if composite_key(token.chain_id, dep) not in by_key:
                raise CircularBasketError(
                    f"Composite {token.symbol} ({token.address}) depends on "
                    f"{dep}, which is not a registered composite on chain "
                    f"{token.chain_id}"
                )

    ordered: list[CompositeTokenConfig] = []
    done: set[CompositeKey] = set()
    pending = list(by_key.values())

    while pending:
        progressed = False
        for token in list(pending):
            deps = {composite_key(token.chain_id, d) for d in token.depends_on}
            if deps <= done:
                ordered.append(token)
                done.add(composite_key(token.chain_id, token.address))
                pending.remove(token)
                progressed = True
                break
        if not progressed:
            symbols = ", ".join(t.symbol for t in pending)
            raise CircularBasketError(f"Circular basket dependency among: {symbols}")

    return ordered


def with_dependencies(
    wanted: set[CompositeKey], tokens: list[CompositeTokenConfig]
) -> set[CompositeKey]:
    """Expand ``wanted`` with every transitive declared dependency."""
    by_key = {composite_key(t.chain_id, t.address): t for t in tokens}
    result: set[CompositeKey] = set()
    stack = list(wanted)
    while stack:
        key = stack.pop()
        if key in result or key not in by_key:
            continue
        result.add(key)
        token = by_key[key]
        stack.extend(composite_key(token.chain_id, d) for d in token.depends_on)
    return result
