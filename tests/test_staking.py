from dataclasses import dataclass

import pytest

from stakesim.env import BankRouter, MemoryStorage, MockApi
from stakesim.messages import (
    AllDelegationsQuery,
    AllValidatorsQuery,
    BondedDenomQuery,
    Delegate,
    DelegationQuery,
    ProcessQueue,
    Redelegate,
    Slash,
    Undelegate,
    ValidatorQuery,
)
from stakesim.staking import StakeKeeper, get_staking_info, update_rewards
from stakesim.types import (
    BlockInfo,
    Decimal,
    Delegation,
    FullDelegation,
    StakingError,
    StakingInfo,
    Validator,
    coin,
)

YEAR = 60 * 60 * 24 * 365


@dataclass
class Env:
    api: MockApi
    store: MemoryStorage
    router: BankRouter
    keeper: StakeKeeper
    block: BlockInfo


def setup_env(apr, commission):
    api = MockApi()
    store = MemoryStorage()
    router = BankRouter()
    keeper = StakeKeeper()
    block = BlockInfo()
    keeper.setup(store, StakingInfo(bonded_denom="TOKEN", unbonding_time=60, apr=apr))
    keeper.add_validator(
        api,
        store,
        block,
        Validator(
            address="testvaloper1",
            commission=commission,
            max_commission=Decimal.percent(100),
            max_change_rate=Decimal.percent(1),
        ),
    )
    return Env(api, store, router, keeper, block), "testvaloper1"


def execute_stake(env, sender, msg):
    return env.keeper.execute(env.api, env.store, env.router, env.block, sender, msg)


def query_stake(env, request):
    return env.keeper.query(env.api, env.store, env.block, request)


def balance(env, addr):
    return env.router.balance(env.store, addr, "TOKEN").amount


def process(env):
    return env.keeper.process_queue(env.api, env.store, env.router, env.block)


def add_second_validator(env, address="validator2", commission=None):
    env.keeper.add_validator(
        env.api,
        env.store,
        env.block,
        Validator(
            address=address,
            commission=Decimal.zero() if commission is None else commission,
            max_commission=Decimal.percent(20),
            max_change_rate=Decimal.percent(1),
        ),
    )


def test_add_get_validators():
    api = MockApi()
    store = MemoryStorage()
    keeper = StakeKeeper()
    block = BlockInfo()
    valoper1 = Validator(
        "testvaloper1", Decimal.percent(10), Decimal.percent(20), Decimal.percent(1)
    )
    keeper.add_validator(api, store, block, valoper1)
    assert keeper.get_validator(store, "testvaloper1") == valoper1

    fake = Validator(
        "testvaloper1", Decimal.percent(1), Decimal.percent(10), Decimal.percent(100)
    )
    with pytest.raises(StakingError, match="already exists"):
        keeper.add_validator(api, store, block, fake)
    assert keeper.get_validator(store, "testvaloper1") == valoper1
    assert keeper.get_validators(store) == [valoper1]


def test_default_staking_info():
    info = get_staking_info(MemoryStorage())
    assert info.bonded_denom == "TOKEN"
    assert info.unbonding_time == 60
    assert info.apr == Decimal.percent(10)


def test_validator_slashing():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.keeper.add_stake(
        env.api, env.store, env.block, "delegator", validator, coin(100, "TOKEN")
    )
    env.keeper.sudo(
        env.api, env.store, env.router, env.block,
        Slash(validator="testvaloper1", percentage=Decimal.percent(50)),
    )
    assert env.keeper.get_stake(env.store, "delegator", validator).amount == 50

    env.keeper.sudo(
        env.api, env.store, env.router, env.block,
        Slash(validator="testvaloper1", percentage=Decimal.percent(100)),
    )
    assert env.keeper.get_stake(env.store, "delegator", validator) is None


def test_slash_rejects_more_than_hundred_percent():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    with pytest.raises(StakingError) as excinfo:
        env.keeper.sudo(
            env.api, env.store, env.router, env.block,
            Slash(validator=validator, percentage=Decimal.percent(150)),
        )
    assert str(excinfo.value) == "expected percentage"


def test_rewards_work_for_single_delegator():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.keeper.add_stake(
        env.api, env.store, env.block, "delegator", validator, coin(200, "TOKEN")
    )
    block = env.block.plus_seconds(YEAR // 2)
    rewards = env.keeper.get_rewards(env.store, block, "delegator", validator)
    assert rewards == coin(9, "TOKEN")
    assert env.keeper.get_rewards(env.store, block, "nobody", validator) is None
    with pytest.raises(StakingError) as excinfo:
        env.keeper.get_rewards(env.store, block, "delegator", "nope")
    assert str(excinfo.value) == "validator nope not found"


def test_rewards_work_for_multiple_delegators():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    keeper = env.keeper
    keeper.add_stake(env.api, env.store, env.block, "delegator1", validator, coin(100, "TOKEN"))
    keeper.add_stake(env.api, env.store, env.block, "delegator2", validator, coin(200, "TOKEN"))

    block = env.block.plus_seconds(YEAR)
    assert keeper.get_rewards(env.store, block, "delegator1", validator).amount == 9
    assert keeper.get_rewards(env.store, block, "delegator2", validator).amount == 18

    keeper.add_stake(env.api, env.store, block, "delegator1", validator, coin(100, "TOKEN"))
    block = block.plus_seconds(YEAR)
    assert keeper.get_rewards(env.store, block, "delegator1", validator).amount == 27
    assert keeper.get_rewards(env.store, block, "delegator2", validator).amount == 36

    keeper.remove_stake(env.api, env.store, block, "delegator2", validator, coin(100, "TOKEN"))
    block = block.plus_seconds(YEAR)
    assert keeper.get_rewards(env.store, block, "delegator2", validator).amount == 45


def test_update_rewards_unknown_validator():
    env, _ = setup_env(Decimal.percent(10), Decimal.percent(10))
    with pytest.raises(StakingError) as excinfo:
        update_rewards(env.api, env.store, env.block, "unknownvaloper")
    assert str(excinfo.value) == "validator does not exist"


def test_execute():
    env, validator1 = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(1000, "TOKEN")])
    add_second_validator(env)

    response = execute_stake(
        env, "delegator1", Delegate(validator=validator1, amount=coin(100, "TOKEN"))
    )
    assert response.events[0].ty == "delegate"
    assert response.events[0].attributes == [
        ("validator", "testvaloper1"),
        ("amount", "100TOKEN"),
        ("new_shares", "100"),
    ]
    assert balance(env, "delegator1") == 900

    env.block = env.block.plus_seconds(YEAR)
    execute_stake(
        env,
        "delegator1",
        Redelegate(src_validator=validator1, dst_validator="validator2", amount=coin(100, "TOKEN")),
    )
    assert balance(env, "delegator1") == 900
    assert query_stake(env, AllDelegationsQuery(delegator="delegator1")) == [
        Delegation("delegator1", "validator2", coin(100, "TOKEN"))
    ]

    execute_stake(
        env, "delegator1", Undelegate(validator="validator2", amount=coin(100, "TOKEN"))
    )
    env.block = env.block.plus_seconds(60)
    process(env)
    assert balance(env, "delegator1") == 1000


def test_cannot_steal():
    env, validator1 = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(100, "TOKEN")])
    execute_stake(env, "delegator1", Delegate(validator=validator1, amount=coin(100, "TOKEN")))

    with pytest.raises(StakingError) as excinfo:
        execute_stake(
            env, "delegator1", Undelegate(validator=validator1, amount=coin(200, "TOKEN"))
        )
    assert str(excinfo.value) == "invalid shares amount"

    add_second_validator(env)
    with pytest.raises(StakingError) as excinfo:
        execute_stake(
            env,
            "delegator1",
            Redelegate(
                src_validator=validator1, dst_validator="validator2", amount=coin(200, "TOKEN")
            ),
        )
    assert str(excinfo.value) == "invalid shares amount"

    with pytest.raises(StakingError) as excinfo:
        execute_stake(
            env, "delegator1", Undelegate(validator="validator2", amount=coin(100, "TOKEN"))
        )
    assert str(excinfo.value) == "no delegation for (address, validator) tuple"


def test_denom_validation():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(100, "FAKE")])
    with pytest.raises(StakingError) as excinfo:
        execute_stake(env, "delegator1", Delegate(validator=validator, amount=coin(100, "FAKE")))
    assert str(excinfo.value) == "cannot delegate coins of denominator FAKE, only of TOKEN"


def test_cannot_slash_nonexistent():
    env, _ = setup_env(Decimal.percent(10), Decimal.percent(10))
    with pytest.raises(StakingError) as excinfo:
        env.keeper.sudo(
            env.api, env.store, env.router, env.block,
            Slash(validator="nonexistingvaloper", percentage=Decimal.percent(50)),
        )
    assert str(excinfo.value) == "validator does not exist"


def test_non_existent_validator():
    env, _ = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(100, "TOKEN")])
    with pytest.raises(StakingError) as excinfo:
        execute_stake(
            env, "delegator1", Delegate(validator="testvaloper2", amount=coin(100, "TOKEN"))
        )
    assert str(excinfo.value) == "validator does not exist"
    with pytest.raises(StakingError) as excinfo:
        execute_stake(
            env, "delegator1", Undelegate(validator="testvaloper2", amount=coin(100, "TOKEN"))
        )
    assert str(excinfo.value) == "validator does not exist"


def test_zero_staking_forbidden():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    with pytest.raises(StakingError) as excinfo:
        execute_stake(env, "delegator1", Delegate(validator=validator, amount=coin(0, "TOKEN")))
    assert str(excinfo.value) == "invalid delegation amount"
    with pytest.raises(StakingError) as excinfo:
        execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(0, "TOKEN")))
    assert str(excinfo.value) == "invalid shares amount"


def test_unsupported_message():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    with pytest.raises(StakingError) as excinfo:
        execute_stake(env, "delegator1", "withdraw")
    assert str(excinfo.value).startswith("Unsupported staking message")
    assert env.keeper.get_stake(env.store, "delegator1", validator) is None


def test_query_staking():
    env, validator1 = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(260, "TOKEN")])
    env.router.init_balance(env.store, "delegator2", [coin(150, "TOKEN")])

    valoper2 = Validator(
        "testvaloper2", Decimal.percent(0), Decimal.percent(1), Decimal.percent(1)
    )
    env.keeper.add_validator(env.api, env.store, env.block, valoper2)

    valoper1 = query_stake(env, ValidatorQuery(address=validator1))
    assert query_stake(env, AllValidatorsQuery()) == [valoper1, valoper2]
    assert query_stake(env, ValidatorQuery(address="notvaloper")) is None
    assert query_stake(env, BondedDenomQuery()) == "TOKEN"

    execute_stake(env, "delegator1", Delegate(validator=validator1, amount=coin(100, "TOKEN")))
    execute_stake(env, "delegator1", Delegate(validator="testvaloper2", amount=coin(160, "TOKEN")))
    execute_stake(env, "delegator2", Delegate(validator=validator1, amount=coin(150, "TOKEN")))
    execute_stake(env, "delegator1", Undelegate(validator=validator1, amount=coin(50, "TOKEN")))
    execute_stake(env, "delegator2", Undelegate(validator=validator1, amount=coin(50, "TOKEN")))

    assert query_stake(env, AllDelegationsQuery(delegator="delegator1")) == [
        Delegation("delegator1", "testvaloper1", coin(50, "TOKEN")),
        Delegation("delegator1", "testvaloper2", coin(160, "TOKEN")),
    ]
    assert query_stake(
        env, DelegationQuery(delegator="delegator2", validator=validator1)
    ) == FullDelegation(
        delegator="delegator2",
        validator="testvaloper1",
        amount=coin(100, "TOKEN"),
        can_redelegate=coin(100, "TOKEN"),
        accumulated_rewards=[],
    )


def test_delegation_query_non_existent_validator():
    env, _ = setup_env(Decimal.percent(10), Decimal.percent(10))
    with pytest.raises(StakingError) as excinfo:
        query_stake(env, DelegationQuery(delegator="delegator1", validator="testvaloper9"))
    assert str(excinfo.value) == "non-existent validator testvaloper9"


def test_delegation_queries_unbonding():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(100, "TOKEN")])
    env.router.init_balance(env.store, "delegator2", [coin(150, "TOKEN")])

    execute_stake(env, "delegator1", Delegate(validator=validator, amount=coin(100, "TOKEN")))
    execute_stake(env, "delegator2", Delegate(validator=validator, amount=coin(150, "TOKEN")))
    execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(50, "TOKEN")))
    execute_stake(env, "delegator2", Undelegate(validator=validator, amount=coin(150, "TOKEN")))

    assert query_stake(env, AllDelegationsQuery(delegator="delegator1")) == [
        Delegation("delegator1", validator, coin(50, "TOKEN"))
    ]
    assert query_stake(env, DelegationQuery(delegator="delegator2", validator=validator)) is None

    execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(25, "TOKEN")))
    env.block = env.block.plus_seconds(10)
    execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(25, "TOKEN")))

    assert query_stake(env, DelegationQuery(delegator="delegator1", validator=validator)) is None
    assert query_stake(env, AllDelegationsQuery(delegator="delegator1")) == []


def test_partial_unbonding_reduces_stake():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator1", [coin(100, "TOKEN")])

    execute_stake(env, "delegator1", Delegate(validator=validator, amount=coin(100, "TOKEN")))
    execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(50, "TOKEN")))
    env.block = env.block.plus_seconds(10)
    execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(30, "TOKEN")))
    env.block = env.block.plus_seconds(10)
    execute_stake(env, "delegator1", Undelegate(validator=validator, amount=coin(20, "TOKEN")))

    env.block = env.block.plus_seconds(40)
    process(env)
    assert query_stake(env, DelegationQuery(delegator="delegator1", validator=validator)) is None
    assert query_stake(env, AllDelegationsQuery(delegator="delegator1")) == []

    env.block = env.block.plus_seconds(20)
    env.keeper.sudo(env.api, env.store, env.router, env.block, ProcessQueue())
    assert query_stake(env, DelegationQuery(delegator="delegator1", validator=validator)) is None
    assert query_stake(env, AllDelegationsQuery(delegator="delegator1")) == []
    assert balance(env, "delegator1") == 100


def test_delegations_slashed():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator", [coin(333, "TOKEN")])

    execute_stake(env, "delegator", Delegate(validator=validator, amount=coin(333, "TOKEN")))
    execute_stake(env, "delegator", Undelegate(validator=validator, amount=coin(111, "TOKEN")))
    env.keeper.sudo(
        env.api, env.store, env.router, env.block,
        Slash(validator="testvaloper1", percentage=Decimal.percent(50)),
    )

    delegations = query_stake(env, AllDelegationsQuery(delegator="delegator"))
    assert delegations[0] == Delegation("delegator", validator, coin(111, "TOKEN"))

    env.block = env.block.plus_seconds(60)
    process(env)
    assert balance(env, "delegator") == 55


def test_rewards_initial_wait():
    env, validator = setup_env(Decimal.percent(10), Decimal.zero())
    env.router.init_balance(env.store, "delegator", [coin(100, "TOKEN")])

    env.block = env.block.plus_seconds(YEAR)
    execute_stake(env, "delegator", Delegate(validator=validator, amount=coin(100, "TOKEN")))
    env.block = env.block.plus_seconds(YEAR)

    response = query_stake(env, DelegationQuery(delegator="delegator", validator=validator))
    assert response.accumulated_rewards == [coin(10, "TOKEN")]


def test_undelegate_event_attributes():
    env, validator = setup_env(Decimal.percent(10), Decimal.percent(10))
    env.router.init_balance(env.store, "delegator", [coin(100, "TOKEN")])
    execute_stake(env, "delegator", Delegate(validator=validator, amount=coin(100, "TOKEN")))
    response = execute_stake(
        env, "delegator", Undelegate(validator=validator, amount=coin(40, "TOKEN"))
    )
    assert response.events[0].ty == "unbond"
    assert response.events[0].attributes == [
        ("validator", "testvaloper1"),
        ("amount", "40TOKEN"),
        ("completion_time", "2022-09-27T14:00:00+00:00"),
    ]
    assert env.keeper.get_stake(env.store, "delegator", validator) == coin(60, "TOKEN")