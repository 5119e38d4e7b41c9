"""In-memory storage, a mock address API and a minimal bank for the keepers."""

from __future__ import annotations

import copy
from collections.abc import Hashable, Iterable, Iterator
from typing import Any, Optional

from .messages import BankMint, BankSend
from .types import AppResponse, BlockInfo, Coin, Event, StakingError, coin

_MIN_ADDRESS_LENGTH = 3
_MAX_ADDRESS_LENGTH = 90
_BANK_NAMESPACE = "bank"


class MemoryStorage:
    """A key/value store kept in memory.

    Values are copied on the way in and on the way out, so callers never share
    mutable state with the store. :meth:`prefixed` returns a view of the same
    data in which every key lives under a namespace.
    """

    def __init__(self) -> None:
        self._data: dict[tuple, Any] = {}
        self._prefix: tuple = ()

    def _key(self, key: Hashable) -> tuple:
        return self._prefix + (key,)

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return a copy of the value stored at ``key``, or ``default``."""
        full_key = self._key(key)
        if full_key not in self._data:
            return default
        return copy.deepcopy(self._data[full_key])

    def set(self, key: Hashable, value: Any) -> None:
        """Store a copy of ``value`` at ``key``."""
        self._data[self._key(key)] = copy.deepcopy(value)

    def remove(self, key: Hashable) -> None:
        """Delete ``key``; removing a missing key does nothing."""
        self._data.pop(self._key(key), None)

    def prefixed(self, namespace: Hashable) -> MemoryStorage:
        """Return a view of this store whose keys live under ``namespace``."""
        view = MemoryStorage.__new__(MemoryStorage)
        view._data = self._data
        view._prefix = self._prefix + (namespace,)
        return view

    def __contains__(self, key: Hashable) -> bool:
        return self._key(key) in self._data

    def __iter__(self) -> Iterator[Hashable]:
        depth = len(self._prefix)
        for full_key in list(self._data):
            if len(full_key) == depth + 1 and full_key[:depth] == self._prefix:
                yield full_key[depth]


class MockApi:
    """Address validation in the manner of a test chain's mock API."""

    def addr_validate(self, address: str) -> str:
        """Return ``address`` if it is a valid, normalized address."""
        if len(address) < _MIN_ADDRESS_LENGTH:
            raise StakingError(
                "Invalid input: human address too short for this mock "
                f"implementation (must be >= {_MIN_ADDRESS_LENGTH})."
            )
        if len(address) > _MAX_ADDRESS_LENGTH:
            raise StakingError(
                "Invalid input: human address too long for this mock "
                f"implementation (must be <= {_MAX_ADDRESS_LENGTH})."
            )
        if address.lower() != address:
            raise StakingError("Invalid input: address not normalized")
        return address


def _format_coins(coins: Iterable[Coin]) -> str:
    return ",".join(str(c) for c in coins)


class BankRouter:
    """A router that keeps account balances and handles bank messages."""

    @staticmethod
    def _accounts(storage: MemoryStorage) -> MemoryStorage:
        return storage.prefixed(_BANK_NAMESPACE)

    def _load(self, storage: MemoryStorage, address: str) -> dict[str, int]:
        return self._accounts(storage).get(address, {})

    def _save(
        self, storage: MemoryStorage, address: str, balances: dict[str, int]
    ) -> None:
        cleaned = {denom: amount for denom, amount in balances.items() if amount}
        accounts = self._accounts(storage)
        if cleaned:
            accounts.set(address, cleaned)
        else:
            accounts.remove(address)

    def init_balance(
        self, storage: MemoryStorage, address: str, coins: Iterable[Coin]
    ) -> None:
        """Replace the balance of ``address`` with ``coins``."""
        balances: dict[str, int] = {}
        for c in coins:
            if c.amount < 0:
                raise StakingError(f"Negative amount {c}")
            balances[c.denom] = balances.get(c.denom, 0) + c.amount
        self._save(storage, address, balances)

    def balance(self, storage: MemoryStorage, address: str, denom: str) -> Coin:
        """Return the amount of ``denom`` held by ``address``."""
        return coin(self._load(storage, address).get(denom, 0), denom)

    def _add(
        self, balances: dict[str, int], coins: Iterable[Coin]
    ) -> dict[str, int]:
        result = dict(balances)
        for c in coins:
            result[c.denom] = result.get(c.denom, 0) + c.amount
        return result

    def _subtract(
        self, balances: dict[str, int], coins: Iterable[Coin]
    ) -> dict[str, int]:
        result = dict(balances)
        for c in coins:
            have = result.get(c.denom, 0)
            if c.amount > have:
                raise StakingError(f"Overflow: Cannot Sub with {have} and {c.amount}")
            result[c.denom] = have - c.amount
        return result

    def execute(
        self,
        api: MockApi,
        storage: MemoryStorage,
        block: BlockInfo,
        sender: str,
        msg: object,
    ) -> AppResponse:
        """Handle a bank transfer sent by ``sender``."""
        if not isinstance(msg, BankSend):
            raise StakingError(f"Unsupported bank message: {msg!r}")
        recipient = api.addr_validate(msg.to_address)
        amount = [c for c in msg.amount if c.amount]
        if any(c.amount < 0 for c in amount):
            raise StakingError("Cannot send negative amounts")

        sender_balances = self._subtract(self._load(storage, sender), amount)
        self._save(storage, sender, sender_balances)
        recipient_balances = self._add(self._load(storage, recipient), amount)
        self._save(storage, recipient, recipient_balances)

        event = (
            Event("transfer")
            .add_attribute("recipient", recipient)
            .add_attribute("sender", sender)
            .add_attribute("amount", _format_coins(amount))
        )
        return AppResponse(events=[event])

    def sudo(
        self,
        api: MockApi,
        storage: MemoryStorage,
        block: BlockInfo,
        msg: object,
    ) -> AppResponse:
        """Handle a privileged bank action such as minting."""
        if not isinstance(msg, BankMint):
            raise StakingError(f"Unsupported bank sudo message: {msg!r}")
        recipient = api.addr_validate(msg.to_address)
        amount = [c for c in msg.amount if c.amount]
        if any(c.amount < 0 for c in amount):
            raise StakingError("Cannot mint negative amounts")
        self._save(storage, recipient, self._add(self._load(storage, recipient), amount))
        return AppResponse()


def _balances_of(router: BankRouter, storage: MemoryStorage, address: str) -> Optional[dict]:
    return router._load(storage, address) or None