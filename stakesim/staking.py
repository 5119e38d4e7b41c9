"""The staking keeper: validators, delegations, rewards and unbonding."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from .env import MemoryStorage, MockApi
from .messages import (
    AllDelegationsQuery,
    AllValidatorsQuery,
    BankSend,
    BondedDenomQuery,
    CosmosRouter,
    Delegate,
    DelegationQuery,
    ProcessQueue,
    Redelegate,
    Slash,
    Undelegate,
    ValidatorQuery,
)
from .types import (
    AppResponse,
    BlockInfo,
    Coin,
    Decimal,
    Delegation,
    Event,
    FullDelegation,
    StakingError,
    StakingInfo,
    Validator,
    coin,
)

NAMESPACE_STAKING = "staking"
NAMESPACE_DISTRIBUTION = "distribution"
SECONDS_PER_YEAR = 60 * 60 * 24 * 365

_NANOS_PER_SECOND = 1_000_000_000
_STAKING_INFO = "staking_info"
_STAKES = "stakes"
_VALIDATOR_MAP = "validator_map"
_VALIDATORS = "validators"
_VALIDATOR_INFO = "validator_info"
_UNBONDING_QUEUE = "unbonding_queue"
_COMPLETION_TIME = "2022-09-27T14:00:00+00:00"


@dataclass
class ValidatorInfo:
    """Operational data about a validator, needed for reward calculation."""

    last_rewards_calculation: int
    stakers: set[str] = field(default_factory=set)
    stake: int = 0


@dataclass
class Shares:
    """A staker's stake and rewards at one validator; fractional after slashing."""

    stake: Decimal = field(default_factory=Decimal.zero)
    rewards: Decimal = field(default_factory=Decimal.zero)

    def share_of_rewards(self, validator_info: ValidatorInfo, rewards: Decimal) -> Decimal:
        """Return the part of ``rewards`` due to this staker."""
        if validator_info.stake == 0:
            return Decimal.zero()
        return rewards * self.stake / Decimal.from_ratio(validator_info.stake, 1)


@dataclass
class Unbonding:
    delegator: str
    validator: str
    amount: int
    payout_at: int


def _staking(storage: MemoryStorage) -> MemoryStorage:
    return storage.prefixed(NAMESPACE_STAKING)


def _stakes_key(delegator: str, validator: str) -> tuple:
    return (_STAKES, delegator, validator)


def _load_staking_info(staking: MemoryStorage) -> StakingInfo:
    info = staking.get(_STAKING_INFO)
    return StakingInfo() if info is None else info


def get_staking_info(storage: MemoryStorage) -> StakingInfo:
    """Return the staking parameters kept in ``storage``, or the defaults."""
    return _load_staking_info(_staking(storage))


def load_shares(storage: MemoryStorage, delegator: str, validator: str) -> Optional[Shares]:
    """Return the shares of ``delegator`` at ``validator``, if any."""
    return _staking(storage).get(_stakes_key(delegator, validator))


def save_shares(
    storage: MemoryStorage, delegator: str, validator: str, shares: Shares
) -> None:
    """Store the shares of ``delegator`` at ``validator``."""
    _staking(storage).set(_stakes_key(delegator, validator), shares)


def _calculate_rewards(
    current_time: int,
    since: int,
    interest_rate: Decimal,
    validator_commission: Decimal,
    stake: int,
) -> Decimal:
    since_whole = (since // _NANOS_PER_SECOND) * _NANOS_PER_SECOND
    if current_time < since_whole:
        raise StakingError("Timestamp underflow")
    time_diff = (current_time - since_whole) // _NANOS_PER_SECOND
    reward = (
        Decimal.from_ratio(stake, 1)
        * interest_rate
        * Decimal.from_ratio(time_diff, 1)
        / Decimal.from_ratio(SECONDS_PER_YEAR, 1)
    )
    return reward - reward * validator_commission


def _update_rewards(
    api: MockApi, staking: MemoryStorage, block: BlockInfo, validator: str
) -> None:
    staking_info = _load_staking_info(staking)
    validator_info: Optional[ValidatorInfo] = staking.get((_VALIDATOR_INFO, validator))
    if validator_info is None:
        raise StakingError("validator does not exist")
    validator_obj: Optional[Validator] = staking.get((_VALIDATOR_MAP, validator))
    if validator_obj is None:
        raise StakingError(f"validator {validator} not found")

    if validator_info.last_rewards_calculation >= block.time:
        return

    new_rewards = _calculate_rewards(
        block.time,
        validator_info.last_rewards_calculation,
        staking_info.apr,
        validator_obj.commission,
        validator_info.stake,
    )

    validator_info.last_rewards_calculation = block.time
    staking.set((_VALIDATOR_INFO, validator), validator_info)

    if new_rewards.is_zero():
        return
    validator_addr = api.addr_validate(validator_obj.address)
    for staker in sorted(validator_info.stakers):
        key = _stakes_key(staker, validator_addr)
        shares: Optional[Shares] = staking.get(key)
        if shares is None:
            raise StakingError("all stakers in validator_info should exist")
        shares.rewards = shares.rewards + shares.share_of_rewards(validator_info, new_rewards)
        staking.set(key, shares)


def update_rewards(
    api: MockApi, storage: MemoryStorage, block: BlockInfo, validator: str
) -> None:
    """Bring the rewards of ``validator`` and its stakers up to ``block``.

    Call this before changing anything that influences future rewards.
    """
    _update_rewards(api, _staking(storage), block, validator)


def _rewards_internal(
    staking: MemoryStorage,
    block: BlockInfo,
    shares: Shares,
    validator: Validator,
    validator_info: ValidatorInfo,
) -> Coin:
    staking_info = _load_staking_info(staking)
    new_validator_rewards = _calculate_rewards(
        block.time,
        validator_info.last_rewards_calculation,
        staking_info.apr,
        validator.commission,
        validator_info.stake,
    )
    delegator_rewards = shares.rewards + shares.share_of_rewards(
        validator_info, new_validator_rewards
    )
    return coin(delegator_rewards.to_uint(), staking_info.bonded_denom)


@dataclass
class StakeKeeper:
    """Keeps validators and delegations; staked tokens are held by ``module_addr``.

    All methods take the root storage and keep their data in the staking
    namespace of it.
    """

    module_addr: str = "staking_module"

    def setup(self, storage: MemoryStorage, staking_info: StakingInfo) -> None:
        """Store the general staking parameters."""
        _staking(storage).set(_STAKING_INFO, staking_info)

    def add_validator(
        self, api: MockApi, storage: MemoryStorage, block: BlockInfo, validator: Validator
    ) -> None:
        """Register a new validator available for staking."""
        staking = _staking(storage)
        val_addr = api.addr_validate(validator.address)
        if (_VALIDATOR_MAP, val_addr) in staking:
            raise StakingError(
                f"Cannot add validator {val_addr}, since a validator with that "
                "address already exists"
            )
        staking.set((_VALIDATOR_MAP, val_addr), validator)
        staking.set(_VALIDATORS, staking.get(_VALIDATORS, []) + [validator])
        staking.set((_VALIDATOR_INFO, val_addr), ValidatorInfo(last_rewards_calculation=block.time))

    def get_rewards(
        self, storage: MemoryStorage, block: BlockInfo, delegator: str, validator: str
    ) -> Optional[Coin]:
        """Return the rewards of ``delegator`` at ``validator``, or None without stake."""
        staking = _staking(storage)
        validator_obj = self._get_validator(staking, validator)
        if validator_obj is None:
            raise StakingError(f"validator {validator} not found")
        shares = staking.get(_stakes_key(delegator, validator))
        if shares is None:
            return None
        validator_info = staking.get((_VALIDATOR_INFO, validator))
        if validator_info is None:
            raise StakingError(f"validator info for {validator} not found")
        return _rewards_internal(staking, block, shares, validator_obj, validator_info)

    @staticmethod
    def _get_validator(staking: MemoryStorage, address: str) -> Optional[Validator]:
        return staking.get((_VALIDATOR_MAP, address))

    def get_validator(self, storage: MemoryStorage, address: str) -> Optional[Validator]:
        """Return the validator at ``address``, or None."""
        return self._get_validator(_staking(storage), address)

    def get_validators(self, storage: MemoryStorage) -> list[Validator]:
        """Return all validators in the order they were added."""
        return list(_staking(storage).get(_VALIDATORS, []))

    @staticmethod
    def _get_stake(staking: MemoryStorage, account: str, validator: str) -> Optional[Coin]:
        shares: Optional[Shares] = staking.get(_stakes_key(account, validator))
        if shares is None:
            return None
        return coin(shares.stake.to_uint(), _load_staking_info(staking).bonded_denom)

    def get_stake(
        self, storage: MemoryStorage, account: str, validator: str
    ) -> Optional[Coin]:
        """Return the stake of ``account`` at ``validator``, or None."""
        return self._get_stake(_staking(storage), account, validator)

    def add_stake(
        self,
        api: MockApi,
        storage: MemoryStorage,
        block: BlockInfo,
        to_address: str,
        validator: str,
        amount: Coin,
    ) -> None:
        """Add ``amount`` to the stake of ``to_address`` at ``validator``."""
        staking = _staking(storage)
        self._validate_denom(staking, amount)
        self._update_stake(api, staking, block, to_address, validator, amount.amount, sub=False)

    def remove_stake(
        self,
        api: MockApi,
        storage: MemoryStorage,
        block: BlockInfo,
        from_address: str,
        validator: str,
        amount: Coin,
    ) -> None:
        """Remove ``amount`` from the stake of ``from_address`` at ``validator``."""
        staking = _staking(storage)
        self._validate_denom(staking, amount)
        self._update_stake(api, staking, block, from_address, validator, amount.amount, sub=True)

    def _update_stake(
        self,
        api: MockApi,
        staking: MemoryStorage,
        block: BlockInfo,
        delegator: str,
        validator: str,
        amount: int,
        sub: bool,
    ) -> None:
        _update_rewards(api, staking, block, validator)

        validator_info = staking.get((_VALIDATOR_INFO, validator))
        if validator_info is None:
            validator_info = ValidatorInfo(last_rewards_calculation=block.time)
        key = _stakes_key(delegator, validator)
        shares: Optional[Shares] = staking.get(key)
        if shares is None:
            if sub:
                raise StakingError("no delegation for (address, validator) tuple")
            shares = Shares()

        amount_dec = Decimal.from_ratio(amount, 1)
        if sub:
            if amount_dec > shares.stake:
                raise StakingError("invalid shares amount")
            shares.stake = shares.stake - amount_dec
            if amount > validator_info.stake:
                raise StakingError(
                    f"Overflow: Cannot Sub with {validator_info.stake} and {amount}"
                )
            validator_info.stake -= amount
        else:
            shares.stake = shares.stake + amount_dec
            validator_info.stake += amount

        if shares.stake.is_zero():
            staking.remove(key)
            validator_info.stakers.discard(delegator)
        else:
            staking.set(key, shares)
            validator_info.stakers.add(delegator)
        staking.set((_VALIDATOR_INFO, validator), validator_info)

    def _slash(
        self,
        api: MockApi,
        staking: MemoryStorage,
        block: BlockInfo,
        validator: str,
        percentage: Decimal,
    ) -> None:
        _update_rewards(api, staking, block, validator)

        validator_info: ValidatorInfo = staking.get((_VALIDATOR_INFO, validator))
        remaining = Decimal.one() - percentage
        validator_info.stake = validator_info.stake * remaining

        if validator_info.stake == 0:
            for delegator in validator_info.stakers:
                staking.remove(_stakes_key(delegator, validator))
            validator_info.stakers.clear()
        else:
            for delegator in sorted(validator_info.stakers):
                key = _stakes_key(delegator, validator)
                shares: Optional[Shares] = staking.get(key)
                if shares is None:
                    raise StakingError("all stakers in validator_info should exist")
                shares.stake = shares.stake * remaining
                staking.set(key, shares)

        queue: list[Unbonding] = staking.get(_UNBONDING_QUEUE, [])
        for unbonding in queue:
            if unbonding.validator == validator:
                unbonding.amount = unbonding.amount * remaining
        staking.set(_UNBONDING_QUEUE, queue)
        staking.set((_VALIDATOR_INFO, validator), validator_info)

    @staticmethod
    def _validate_denom(staking: MemoryStorage, amount: Coin) -> None:
        bonded_denom = _load_staking_info(staking).bonded_denom
        if amount.denom != bonded_denom:
            raise StakingError(
                f"cannot delegate coins of denominator {amount.denom}, only of {bonded_denom}"
            )

    @staticmethod
    def _validate_percentage(percentage: Decimal) -> None:
        if percentage > Decimal.one():
            raise StakingError("expected percentage")

    def process_queue(
        self, api: MockApi, storage: MemoryStorage, router: CosmosRouter, block: BlockInfo
    ) -> AppResponse:
        """Pay out every unbonding whose waiting time has passed at ``block``."""
        staking = _staking(storage)
        queue: deque[Unbonding] = deque(staking.get(_UNBONDING_QUEUE, []))
        while queue and queue[0].payout_at <= block.time:
            unbonding = queue.popleft()
            delegator, validator = unbonding.delegator, unbonding.validator

            stake = self._get_stake(staking, delegator, validator)
            if stake is None or stake.amount + sum(
                u.amount
                for u in queue
                if u.delegator == delegator and u.validator == validator
            ) == 0:
                staking.remove(_stakes_key(delegator, validator))

            denom = _load_staking_info(staking).bonded_denom
            if unbonding.amount:
                router.execute(
                    api,
                    storage,
                    block,
                    self.module_addr,
                    BankSend(to_address=delegator, amount=[coin(unbonding.amount, denom)]),
                )
        staking.set(_UNBONDING_QUEUE, list(queue))
        return AppResponse()

    def execute(
        self,
        api: MockApi,
        storage: MemoryStorage,
        router: CosmosRouter,
        block: BlockInfo,
        sender: str,
        msg: object,
    ) -> AppResponse:
        """Handle a delegate, undelegate or redelegate message from ``sender``."""
        staking = _staking(storage)
        match msg:
            case Delegate(validator=validator, amount=amount):
                validator = api.addr_validate(validator)
                if amount.amount == 0:
                    raise StakingError("invalid delegation amount")
                events = [
                    Event("delegate")
                    .add_attribute("validator", validator)
                    .add_attribute("amount", f"{amount.amount}{amount.denom}")
                    .add_attribute("new_shares", str(amount.amount))
                ]
                self.add_stake(api, storage, block, sender, validator, amount)
                router.execute(
                    api,
                    storage,
                    block,
                    sender,
                    BankSend(to_address=self.module_addr, amount=[amount]),
                )
                return AppResponse(events=events)
            case Undelegate(validator=validator, amount=amount):
                validator = api.addr_validate(validator)
                self._validate_denom(staking, amount)
                if amount.amount == 0:
                    raise StakingError("invalid shares amount")
                events = [
                    Event("unbond")
                    .add_attribute("validator", validator)
                    .add_attribute("amount", f"{amount.amount}{amount.denom}")
                    .add_attribute("completion_time", _COMPLETION_TIME)
                ]
                self.remove_stake(api, storage, block, sender, validator, amount)
                staking_info = _load_staking_info(staking)
                queue = staking.get(_UNBONDING_QUEUE, [])
                queue.append(
                    Unbonding(
                        delegator=sender,
                        validator=validator,
                        amount=amount.amount,
                        payout_at=block.plus_seconds(staking_info.unbonding_time).time,
                    )
                )
                staking.set(_UNBONDING_QUEUE, queue)
                return AppResponse(events=events)
            case Redelegate(src_validator=src, dst_validator=dst, amount=amount):
                src = api.addr_validate(src)
                dst = api.addr_validate(dst)
                events = [
                    Event("redelegate")
                    .add_attribute("source_validator", src)
                    .add_attribute("destination_validator", dst)
                    .add_attribute("amount", f"{amount.amount}{amount.denom}")
                ]
                self.remove_stake(api, storage, block, sender, src, amount)
                self.add_stake(api, storage, block, sender, dst, amount)
                return AppResponse(events=events)
            case _:
                raise StakingError(f"Unsupported staking message: {msg!r}")

    def sudo(
        self,
        api: MockApi,
        storage: MemoryStorage,
        router: CosmosRouter,
        block: BlockInfo,
        msg: object,
    ) -> AppResponse:
        """Handle a privileged slash or queue-processing action."""
        match msg:
            case Slash(validator=validator, percentage=percentage):
                validator = api.addr_validate(validator)
                self._validate_percentage(percentage)
                self._slash(api, _staking(storage), block, validator, percentage)
                return AppResponse()
            case ProcessQueue():
                return self.process_queue(api, storage, router, block)
            case _:
                raise StakingError(f"Unsupported staking sudo message: {msg!r}")

    def query(
        self, api: MockApi, storage: MemoryStorage, block: BlockInfo, request: object
    ):
        """Answer a staking query.

        Returns the bonded denomination, a list of :class:`Delegation`, an
        optional :class:`FullDelegation`, a list of validators or an optional
        validator, according to the query.
        """
        staking = _staking(storage)
        match request:
            case BondedDenomQuery():
                return _load_staking_info(staking).bonded_denom
            case AllDelegationsQuery(delegator=delegator):
                delegator = api.addr_validate(delegator)
                delegations = []
                for validator in staking.get(_VALIDATORS, []):
                    amount = self._get_stake(staking, delegator, validator.address)
                    if amount is not None:
                        delegations.append(
                            Delegation(
                                delegator=delegator,
                                validator=validator.address,
                                amount=amount,
                            )
                        )
                return delegations
            case DelegationQuery(delegator=delegator, validator=validator):
                validator_obj = self._get_validator(staking, validator)
                if validator_obj is None:
                    raise StakingError(f"non-existent validator {validator}")
                delegator = api.addr_validate(delegator)
                shares = staking.get(_stakes_key(delegator, validator)) or Shares()
                validator_info = staking.get((_VALIDATOR_INFO, validator))
                if validator_info is None:
                    raise StakingError(f"validator info for {validator} not found")
                reward = _rewards_internal(staking, block, shares, validator_obj, validator_info)
                staking_info = _load_staking_info(staking)
                amount = coin(shares.stake.to_uint(), staking_info.bonded_denom)
                if amount.amount == 0:
                    return None
                return FullDelegation(
                    delegator=delegator,
                    validator=validator,
                    amount=amount,
                    can_redelegate=amount,
                    accumulated_rewards=[] if reward.amount == 0 else [reward],
                )
            case AllValidatorsQuery():
                return list(staking.get(_VALIDATORS, []))
            case ValidatorQuery(address=address):
                return self._get_validator(staking, address)
            case _:
                raise StakingError(f"Unsupported staking query: {request!r}")