"""Messages, queries and the router interface used by the keepers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Union, runtime_checkable

from .types import AppResponse, BlockInfo, Coin, Decimal


@dataclass(frozen=True)
class Delegate:
    """Bond ``amount`` from the sender to ``validator``."""

    validator: str
    amount: Coin


@dataclass(frozen=True)
class Undelegate:
    """Start unbonding ``amount`` of the sender's stake at ``validator``."""

    validator: str
    amount: Coin


@dataclass(frozen=True)
class Redelegate:
    """Move ``amount`` of the sender's stake between two validators."""

    src_validator: str
    dst_validator: str
    amount: Coin


@dataclass(frozen=True)
class Slash:
    """Privileged action: slash ``percentage`` of a validator's stake."""

    validator: str
    percentage: Decimal


@dataclass(frozen=True)
class ProcessQueue:
    """Privileged action: pay out unbondings whose waiting time is over."""


@dataclass(frozen=True)
class WithdrawDelegatorReward:
    """Withdraw the sender's accumulated rewards at ``validator``."""

    validator: str


@dataclass(frozen=True)
class SetWithdrawAddress:
    """Send the sender's future rewards to ``address``."""

    address: str


@dataclass(frozen=True)
class BankSend:
    """Transfer coins from the sender to ``to_address``."""

    to_address: str
    amount: list[Coin] = field(default_factory=list)


@dataclass(frozen=True)
class BankMint:
    """Privileged action: create coins in the account ``to_address``."""

    to_address: str
    amount: list[Coin] = field(default_factory=list)


@dataclass(frozen=True)
class BondedDenomQuery:
    """Ask for the denomination that can be staked."""


@dataclass(frozen=True)
class AllDelegationsQuery:
    """Ask for every delegation held by ``delegator``."""

    delegator: str


@dataclass(frozen=True)
class DelegationQuery:
    """Ask for the full delegation of ``delegator`` at ``validator``."""

    delegator: str
    validator: str


@dataclass(frozen=True)
class AllValidatorsQuery:
    """Ask for all registered validators."""


@dataclass(frozen=True)
class ValidatorQuery:
    """Ask for the validator registered at ``address``."""

    address: str


StakingMsg = Union[Delegate, Undelegate, Redelegate]
StakingSudo = Union[Slash, ProcessQueue]
DistributionMsg = Union[WithdrawDelegatorReward, SetWithdrawAddress]
BankMsg = BankSend
BankSudo = BankMint
StakingQuery = Union[
    BondedDenomQuery,
    AllDelegationsQuery,
    DelegationQuery,
    AllValidatorsQuery,
    ValidatorQuery,
]


@runtime_checkable
class CosmosRouter(Protocol):
    """What a keeper needs to dispatch messages to other modules."""

    def execute(
        self, api, storage, block: BlockInfo, sender: str, msg: object
    ) -> AppResponse:
        """Handle ``msg`` on behalf of ``sender`` and return its response."""

    def sudo(self, api, storage, block: BlockInfo, msg: object) -> AppResponse:
        """Handle the privileged ``msg`` and return its response."""