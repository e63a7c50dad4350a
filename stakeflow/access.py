"""
Capability-based access control.

A `Capability` replaces the usual single owner field. Transfer is two-phase:
the current holder proposes a successor, and the successor must accept before
control moves, so a typo in the new holder cannot lock the component.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import NotAuthorized
from .state.chain import Address, Chain, Journaled, require_address, transactional

logger = logging.getLogger(__name__)


class Capability(Journaled):
    """Authority to perform privileged operations on the components it is passed to."""

    _journal_fields = ("_holder", "_pending")

    def __init__(self, chain: Chain, holder: Address, *, name: str = "owner") -> None:
        self.chain = chain
        self.name = name
        self._holder: Optional[Address] = require_address(holder, name="holder")
        self._pending: Optional[Address] = None
        chain.register(self)

    @property
    def holder(self) -> Optional[Address]:
        return self._holder

    @property
    def pending(self) -> Optional[Address]:
        return self._pending

    def is_holder(self, caller: Address) -> bool:
        return self._holder is not None and caller == self._holder

    def require(self, caller: Address) -> None:
        if not self.is_holder(caller):
            raise NotAuthorized(f"{self.name}: caller {caller} is not the capability holder")

    @transactional
    def propose(self, caller: Address, new_holder: Address) -> None:
        self.require(caller)
        self._pending = require_address(new_holder, name="new_holder")
        logger.info("%s: transfer proposed %s -> %s", self.name, self._holder, new_holder)

    @transactional
    def accept(self, caller: Address) -> None:
        if self._pending is None or caller != self._pending:
            raise NotAuthorized(f"{self.name}: caller {caller} must be the proposed holder to accept")
        logger.info("%s: transfer accepted %s -> %s", self.name, self._holder, caller)
        self._holder = caller
        self._pending = None

    @transactional
    def renounce(self, caller: Address) -> None:
        self.require(caller)
        logger.info("%s: renounced by %s", self.name, caller)
        self._holder = None
        self._pending = None
