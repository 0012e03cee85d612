from pydantic import BaseModel, Field


class BalanceError(ValueError):
    pass


class Balance(BaseModel):
    value: int = Field(default=0, ge=0)


class Coin(BaseModel):
    """Transferable value handed out of (or into) a balance.

    A coin is consumed when joined into a balance and cannot be joined twice.
    """
    value: int = Field(default=0, ge=0)
    consumed: bool = False


def zero() -> Balance:
    return Balance()


def value(balance: Balance) -> int:
    return balance.value


def mint(amount: int) -> Coin:
    # External funding input; the only place value enters the system.
    if amount < 0:
        raise BalanceError(f"Cannot mint a negative amount: {amount}")
    return Coin(value=amount)


def join(balance: Balance, coin: Coin) -> int:
    if coin.consumed:
        raise BalanceError("Coin has already been joined into a balance")
    balance.value += coin.value
    coin.value = 0
    coin.consumed = True
    return balance.value


def take(balance: Balance, amount: int) -> Coin:
    if amount < 0:
        raise BalanceError(f"Cannot take a negative amount: {amount}")
    if amount > balance.value:
        raise BalanceError(f"Cannot take {amount}, balance holds {balance.value}")
    balance.value -= amount
    return Coin(value=amount)
