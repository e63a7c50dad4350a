"""
Execution environment: block height, transaction journal, reentrancy guard.

Every public mutating operation on a protocol component runs inside
`Chain.transaction()`. The outermost transaction snapshots all registered
components; if any exception escapes, every component is restored to that
snapshot before the exception propagates. Nested calls between components
join the outer transaction.

Components opt in by subclassing `Journaled` and listing the attributes that
hold their mutable state in `_journal_fields`.
"""

from __future__ import annotations

import copy
import functools
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Tuple, TypeVar

from ..errors import Reentrancy, ZeroAddress

logger = logging.getLogger(__name__)

# Type aliases
Address = str
Amount = int

ZERO_ADDRESS: Address = "0x" + "00" * 20

F = TypeVar("F", bound=Callable[..., Any])


def require_address(address: Address, *, name: str = "address") -> Address:
    """Reject the null address (and empty / non-string values)."""
    if not isinstance(address, str) or not address or address == ZERO_ADDRESS:
        raise ZeroAddress(f"{name} must not be the zero address")
    return address


def require_amount(amount: Amount, *, name: str = "amount") -> Amount:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise TypeError(f"{name} must be an int")
    if amount < 0:
        raise ValueError(f"{name} must be non-negative: {amount}")
    return amount


class Journaled:
    """Mixin for components whose state participates in chain transactions."""

    _journal_fields: Tuple[str, ...] = ()

    chain: "Chain"
    _entered: bool = False

    def journal_snapshot(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._journal_fields}

    def journal_restore(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)


class Chain:
    """
    Single-threaded execution environment shared by all protocol components.

    `block_number` is the only clock the staking engine reads directly; the
    external yield pool keeps its own cycle counter.
    """

    def __init__(self, block_number: int = 0) -> None:
        if block_number < 0:
            raise ValueError(f"block_number must be non-negative: {block_number}")
        self.block_number = block_number
        self._components: List[Journaled] = []
        self._depth = 0

    def register(self, component: Journaled) -> None:
        if any(c is component for c in self._components):
            return
        self._components.append(component)

    def mine(self, blocks: int = 1) -> int:
        """Advance the block height; returns the new height."""
        if blocks < 0:
            raise ValueError(f"blocks must be non-negative: {blocks}")
        if self._depth:
            raise RuntimeError("cannot mine blocks inside a transaction")
        self.block_number += blocks
        return self.block_number

    def mine_to(self, block_number: int) -> int:
        """Advance to `block_number` (no-op if already at or past it)."""
        if block_number > self.block_number:
            self.mine(block_number - self.block_number)
        return self.block_number

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @property
    def components(self) -> Tuple[Journaled, ...]:
        return tuple(self._components)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        snapshot: List[Tuple[Journaled, Dict[str, Any]]] = []
        registered = len(self._components)
        if self._depth == 0:
            snapshot = [(c, c.journal_snapshot()) for c in self._components]
        self._depth += 1
        try:
            yield
        except BaseException as exc:
            if self._depth == 1:
                for component, state in snapshot:
                    component.journal_restore(state)
                del self._components[registered:]
                logger.debug("transaction rolled back: %s", exc)
            raise
        finally:
            self._depth -= 1


def transactional(method: F) -> F:
    """
    Run a component method atomically and refuse re-entry into the same component.

    A component that is already executing a transactional method (for example
    because a token transfer invoked a receiver hook that calls back in) raises
    `Reentrancy` instead of running the nested call.
    """

    @functools.wraps(method)
    def wrapper(self: Journaled, *args: Any, **kwargs: Any) -> Any:
        if self._entered:
            raise Reentrancy(f"{type(self).__name__}.{method.__name__} re-entered")
        with self.chain.transaction():
            self._entered = True
            try:
                return method(self, *args, **kwargs)
            finally:
                self._entered = False

    return wrapper  # type: ignore[return-value]
