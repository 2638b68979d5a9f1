"""Collaborator interfaces consumed by the vault and strategy engines."""

from typing import Protocol, Sequence


class FungibleToken(Protocol):
    address: str
    decimals: int

    def balance_of(self, holder: str) -> int: ...

    def allowance(self, owner: str, spender: str) -> int: ...

    def transfer(self, caller: str, to: str, amount: int) -> None: ...

    def transfer_from(self, caller: str, owner: str, to: str, amount: int) -> None: ...

    def approve(self, caller: str, spender: str, amount: int) -> None: ...


class LendingMarket(Protocol):
    """Single-asset money market holding a collateralized, borrowing position per account."""

    address: str

    def supply(self, caller: str, amount: int) -> None: ...

    def borrow(self, caller: str, amount: int) -> None: ...

    def repay(self, caller: str, amount: int) -> None: ...

    def withdraw_collateral(self, caller: str, amount: int) -> None: ...

    def current_supplied(self, account: str) -> int: ...

    def current_borrowed(self, account: str) -> int: ...

    def collateral_factor_bps(self) -> int: ...

    def claim_rewards(self, caller: str) -> int: ...

    @property
    def reward_token(self) -> FungibleToken: ...


class SwapRouter(Protocol):
    address: str

    def swap_exact_in(self, caller: str, path: Sequence[str], amount_in: int, min_amount_out: int) -> int: ...
