# stakesim

An in-memory simulation of a proof-of-stake chain's staking and distribution
modules. You can use it to test code that delegates, undelegates, redelegates,
slashes validators and withdraws rewards, without running a node.

## Installation

```
pip install stakesim
```

To run the test suite, install the test extra and run pytest:

```
pip install "stakesim[test]"
pytest
```

## Modules

- `stakesim.types`: value types. These are `Decimal` (unsigned fixed point
  with 18 fractional digits, always rounded down), `Coin` and `coin()`,
  `BlockInfo` (time in nanoseconds, with `plus_seconds`), `StakingInfo`,
  `Validator`, `Delegation`, `FullDelegation`, `Event`, `AppResponse` and the
  `StakingError` exception.
- `stakesim.messages`: message and query dataclasses, plus the `CosmosRouter`
  protocol that the keepers use to dispatch bank messages.
- `stakesim.env`: `MemoryStorage`, a key/value store held in memory that has
  namespaced views; `MockApi`, which checks addresses (3 to 90 characters, all
  lower case); and `BankRouter`, a minimal bank that handles `BankSend` and
  `BankMint`.
- `stakesim.staking`: `StakeKeeper`, which holds validators, delegations,
  rewards and the unbonding queue.
- `stakesim.distribution`: `DistributionKeeper`, which handles reward
  withdrawal and withdraw addresses.

## What it models

- **Validators**: you register them with `StakeKeeper.add_validator`. Adding a
  second validator at the same address is an error. Each validator has a
  commission, which is deducted from the rewards it earns.
- **Delegations**: `StakeKeeper.execute` takes a `Delegate`, `Undelegate` or
  `Redelegate` message. When you delegate, the coins move from the sender to
  the module account `staking_module` through the router. Amounts must be in
  the bonded denomination. A zero amount is rejected.
- **Unbonding**: undelegated tokens wait in a queue for `unbonding_time`
  seconds. `StakeKeeper.process_queue`, or the `ProcessQueue` sudo message,
  pays out every entry that has matured, sending it from `staking_module`.
- **Rewards**: rewards build up from the configured yearly rate `apr`, counted
  in whole seconds since the last update, with the validator's commission
  taken off. They are kept as decimals and rounded down to whole tokens when
  read or paid out. `StakeKeeper.get_rewards` returns the current amount.
- **Slashing**: the `Slash` sudo message cuts the stake of a validator, of its
  delegators and of its pending unbondings by a percentage of at most 100%.
- **Distribution**: `WithdrawDelegatorReward` mints the accumulated rewards,
  through the router's `sudo`, to the delegator or to the address set with
  `SetWithdrawAddress`. Setting the withdraw address back to the delegator
  clears it.

## Quick start

```python
from stakesim.env import BankRouter, MemoryStorage, MockApi
from stakesim.staking import StakeKeeper
from stakesim.distribution import DistributionKeeper
from stakesim.messages import Delegate, Undelegate, WithdrawDelegatorReward
from stakesim.types import BlockInfo, Decimal, StakingInfo, Validator, coin

api = MockApi()
storage = MemoryStorage()
router = BankRouter()
block = BlockInfo()

staking = StakeKeeper()
distribution = DistributionKeeper()

staking.setup(storage, StakingInfo(bonded_denom="TOKEN", unbonding_time=60,
                                   apr=Decimal.percent(10)))
staking.add_validator(api, storage, block, Validator(
    address="testvaloper1",
    commission=Decimal.percent(10),
    max_commission=Decimal.percent(100),
    max_change_rate=Decimal.percent(1),
))

router.init_balance(storage, "delegator", [coin(1000, "TOKEN")])
staking.execute(api, storage, router, block, "delegator",
                Delegate(validator="testvaloper1", amount=coin(100, "TOKEN")))

# One year later: 10% APR minus 10% commission on 100 tokens is 9 tokens.
block = block.plus_seconds(60 * 60 * 24 * 365)
print(staking.get_rewards(storage, block, "delegator", "testvaloper1"))  # 9TOKEN

distribution.execute(api, storage, router, block, "delegator",
                     WithdrawDelegatorReward(validator="testvaloper1"))
print(router.balance(storage, "delegator", "TOKEN"))  # 909TOKEN

staking.execute(api, storage, router, block, "delegator",
                Undelegate(validator="testvaloper1", amount=coin(100, "TOKEN")))
block = block.plus_seconds(60)
staking.process_queue(api, storage, router, block)
print(router.balance(storage, "delegator", "TOKEN"))  # 1009TOKEN
```

## Queries

`StakeKeeper.query` returns Python objects, not serialized responses:

- `BondedDenomQuery()` returns the bonded denomination as a string.
- `AllValidatorsQuery()` returns every validator, in the order it was added.
- `ValidatorQuery(address)` returns a `Validator`, or `None`.
- `AllDelegationsQuery(delegator)` returns a list of `Delegation`.
- `DelegationQuery(delegator, validator)` returns a `FullDelegation` with the
  rewards accumulated so far, or `None` when no stake is left. It raises for
  an unknown validator.

## Errors

A rejected staking or distribution operation raises `StakingError`. The
messages include `"invalid shares amount"`,
`"no delegation for (address, validator) tuple"`, `"validator does not exist"`,
`"invalid delegation amount"` and
`"cannot delegate coins of denominator FAKE, only of TOKEN"`. `Decimal`
arithmetic raises `OverflowError` if a result would be negative, and
`ZeroDivisionError` on division by zero.

## What it does not do

- It keeps all state in a `MemoryStorage`. Nothing is persisted, and there are
  no transactions or rollbacks.
- It runs no contracts and has no chain or block loop. You move time yourself
  with `BlockInfo.plus_seconds`, and you process the unbonding queue yourself.
- The bank is limited to transfers, minting and balance lookups.
- `DistributionKeeper.sudo` and `DistributionKeeper.query` always raise.
- The `completion_time` attribute of the `unbond` event is a fixed value, and
  `can_redelegate` always equals the delegated amount.