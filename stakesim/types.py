"""Value types shared by the staking and distribution keepers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Union

_DECIMAL_PLACES = 18
_FRACTIONAL = 10**_DECIMAL_PLACES
_NANOS_PER_SECOND = 1_000_000_000


class StakingError(Exception):
    """Raised when a staking or distribution operation is rejected."""


@dataclass(frozen=True, order=True)
class Decimal:
    """Unsigned fixed-point number with 18 fractional digits.

    Multiplying by an ``int`` yields an ``int`` rounded down, as when an
    integer amount is scaled by a ratio.
    """

    atomics: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.atomics, int) or isinstance(self.atomics, bool):
            raise TypeError("atomics must be an int")
        if self.atomics < 0:
            raise OverflowError("Decimal cannot be negative")

    @classmethod
    def percent(cls, value: int) -> Decimal:
        """Return ``value`` percent, e.g. ``percent(10)`` is 0.1."""
        if value < 0:
            raise OverflowError("Decimal cannot be negative")
        return cls(value * _FRACTIONAL // 100)

    @classmethod
    def from_ratio(cls, numerator: int, denominator: int) -> Decimal:
        """Return ``numerator / denominator`` rounded down."""
        if denominator == 0:
            raise ZeroDivisionError("Denominator must not be zero")
        if numerator < 0 or denominator < 0:
            raise OverflowError("Decimal cannot be negative")
        return cls(numerator * _FRACTIONAL // denominator)

    @classmethod
    def zero(cls) -> Decimal:
        return cls(0)

    @classmethod
    def one(cls) -> Decimal:
        return cls(_FRACTIONAL)

    def is_zero(self) -> bool:
        return self.atomics == 0

    def to_uint(self) -> int:
        """Return the integer part, rounding down."""
        return self.atomics // _FRACTIONAL

    def __add__(self, other: Decimal) -> Decimal:
        if not isinstance(other, Decimal):
            return NotImplemented
        return Decimal(self.atomics + other.atomics)

    def __sub__(self, other: Decimal) -> Decimal:
        if not isinstance(other, Decimal):
            return NotImplemented
        if other.atomics > self.atomics:
            raise OverflowError(f"Cannot subtract {other} from {self}")
        return Decimal(self.atomics - other.atomics)

    def __mul__(self, other: Union[Decimal, int]) -> Union[Decimal, int]:
        if isinstance(other, Decimal):
            return Decimal(self.atomics * other.atomics // _FRACTIONAL)
        if isinstance(other, int) and not isinstance(other, bool):
            if other < 0:
                raise OverflowError("Cannot multiply by a negative amount")
            return other * self.atomics // _FRACTIONAL
        return NotImplemented

    __rmul__ = __mul__

    def __truediv__(self, other: Decimal) -> Decimal:
        if not isinstance(other, Decimal):
            return NotImplemented
        if other.is_zero():
            raise ZeroDivisionError("Division by zero Decimal")
        return Decimal(self.atomics * _FRACTIONAL // other.atomics)

    def __str__(self) -> str:
        whole, fraction = divmod(self.atomics, _FRACTIONAL)
        if fraction == 0:
            return str(whole)
        digits = str(fraction).rjust(_DECIMAL_PLACES, "0").rstrip("0")
        return f"{whole}.{digits}"

    def __repr__(self) -> str:
        return f"Decimal({self})"


@dataclass(frozen=True)
class Coin:
    """An amount of a single denomination."""

    amount: int
    denom: str

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


def coin(amount: int, denom: str) -> Coin:
    """Shorthand constructor for :class:`Coin`."""
    return Coin(amount=amount, denom=denom)


@dataclass(frozen=True)
class BlockInfo:
    """Block height, time in nanoseconds and chain id."""

    height: int = 12345
    time: int = 1_571_797_419_879_305_533
    chain_id: str = "cosmos-testnet-14002"

    @property
    def seconds(self) -> int:
        return self.time // _NANOS_PER_SECOND

    def plus_seconds(self, seconds: int) -> BlockInfo:
        """Return a copy of this block moved ``seconds`` forward in time."""
        return replace(self, time=self.time + seconds * _NANOS_PER_SECOND)


@dataclass
class StakingInfo:
    """General staking parameters."""

    bonded_denom: str = "TOKEN"
    unbonding_time: int = 60
    apr: Decimal = field(default_factory=lambda: Decimal.percent(10))


@dataclass(frozen=True)
class Validator:
    address: str
    commission: Decimal
    max_commission: Decimal
    max_change_rate: Decimal


@dataclass(frozen=True)
class Delegation:
    delegator: str
    validator: str
    amount: Coin


@dataclass(frozen=True)
class FullDelegation:
    delegator: str
    validator: str
    amount: Coin
    can_redelegate: Coin
    accumulated_rewards: list[Coin] = field(default_factory=list)


@dataclass
class Event:
    """A typed event carrying ordered key/value attributes."""

    ty: str
    attributes: list[tuple[str, str]] = field(default_factory=list)

    def add_attribute(self, key: str, value: object) -> Event:
        """Append an attribute and return the event for chaining."""
        self.attributes.append((str(key), str(value)))
        return self


@dataclass
class AppResponse:
    """Events and optional data produced by handling a message."""

    events: list[Event] = field(default_factory=list)
    data: Optional[bytes] = None