"""The distribution keeper: reward withdrawal and withdraw addresses."""

from __future__ import annotations

from typing import Optional

from .env import MemoryStorage, MockApi
from .messages import BankMint, CosmosRouter, SetWithdrawAddress, WithdrawDelegatorReward
from .staking import (
    NAMESPACE_DISTRIBUTION,
    get_staking_info,
    load_shares,
    save_shares,
    update_rewards,
)
from .types import AppResponse, BlockInfo, Decimal, Event, StakingError, coin

_WITHDRAW_ADDRESS = "withdraw_address"


def _distribution(storage: MemoryStorage) -> MemoryStorage:
    return storage.prefixed(NAMESPACE_DISTRIBUTION)


class DistributionKeeper:
    """Pays out staking rewards and tracks where each delegator wants them sent.

    All methods take the root storage; withdraw addresses live in the
    distribution namespace, rewards in the staking namespace.
    """

    def remove_rewards(
        self,
        api: MockApi,
        storage: MemoryStorage,
        block: BlockInfo,
        delegator: str,
        validator: str,
    ) -> int:
        """Clear the rewards of ``delegator`` at ``validator`` and return their amount."""
        update_rewards(api, storage, block, validator)
        shares = load_shares(storage, delegator, validator)
        if shares is None:
            raise StakingError(f"delegation of {delegator} at {validator} not found")
        rewards = shares.rewards.to_uint()
        shares.rewards = Decimal.zero()
        save_shares(storage, delegator, validator, shares)
        return rewards

    def get_withdraw_address(self, storage: MemoryStorage, delegator: str) -> str:
        """Return where rewards of ``delegator`` go; the delegator itself by default."""
        address: Optional[str] = _distribution(storage).get((_WITHDRAW_ADDRESS, delegator))
        return delegator if address is None else address

    def set_withdraw_address(
        self, storage: MemoryStorage, delegator: str, withdraw_address: str
    ) -> None:
        """Send future rewards of ``delegator`` to ``withdraw_address``."""
        distribution = _distribution(storage)
        key = (_WITHDRAW_ADDRESS, delegator)
        if delegator == withdraw_address:
            distribution.remove(key)
        else:
            distribution.set(key, withdraw_address)

    def execute(
        self,
        api: MockApi,
        storage: MemoryStorage,
        router: CosmosRouter,
        block: BlockInfo,
        sender: str,
        msg: object,
    ) -> AppResponse:
        """Handle a reward withdrawal or a change of withdraw address."""
        match msg:
            case WithdrawDelegatorReward(validator=validator):
                validator_addr = api.addr_validate(validator)
                rewards = self.remove_rewards(api, storage, block, sender, validator_addr)
                denom = get_staking_info(storage).bonded_denom
                receiver = self.get_withdraw_address(storage, sender)
                router.sudo(
                    api,
                    storage,
                    block,
                    BankMint(to_address=receiver, amount=[coin(rewards, denom)]),
                )
                event = (
                    Event("withdraw_delegator_reward")
                    .add_attribute("validator", validator)
                    .add_attribute("sender", sender)
                    .add_attribute("amount", f"{rewards}{denom}")
                )
                return AppResponse(events=[event])
            case SetWithdrawAddress(address=address):
                address = api.addr_validate(address)
                self.set_withdraw_address(storage, sender, address)
                event = Event("set_withdraw_address").add_attribute(
                    "withdraw_address", address
                )
                return AppResponse(events=[event])
            case _:
                raise StakingError(f"Unsupported distribution message: {msg!r}")

    def sudo(
        self,
        api: MockApi,
        storage: MemoryStorage,
        router: CosmosRouter,
        block: BlockInfo,
        msg: object,
    ) -> AppResponse:
        """Distribution has no privileged actions; always raises."""
        raise StakingError("Something went wrong - Distribution doesn't have sudo messages")

    def query(
        self, api: MockApi, storage: MemoryStorage, block: BlockInfo, request: object
    ):
        """Distribution answers no queries; always raises."""
        raise StakingError("Something went wrong - Distribution doesn't have query messages")