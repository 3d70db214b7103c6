"""Contract reader protocol — read-only EVM contract calls."""
from typing import Any, Protocol, Sequence


class ContractReader(Protocol):
    """Abstract interface for ``eth_call``-style view function calls."""

    async def call_function(
        self,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        returns: Sequence[str] = (),
    ) -> tuple[Any, ...]: ...
