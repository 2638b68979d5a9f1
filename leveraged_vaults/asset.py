"""In-memory fungible token used for the underlying asset, reward tokens and vault shares."""

import logging
from dataclasses import dataclass, field

from leveraged_vaults.constants import MAX_UINT256
from leveraged_vaults.errors import AuthorizationError, InsufficientBalance, InvalidAmount
from leveraged_vaults.formatters import derive_address, normalize_address
from leveraged_vaults.ledger import Ledger

logger = logging.getLogger(__name__)


@dataclass
class TokenState:
    balances: dict[str, int] = field(default_factory=dict)
    # owner -> spender -> amount
    allowances: dict[str, dict[str, int]] = field(default_factory=dict)
    total_supply: int = 0


class Token:
    """Balances, allowances and a single optional minter."""

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        decimals: int,
        *,
        address: str | None = None,
        minter: str | None = None,
    ) -> None:
        self.ledger = ledger
        self.symbol = symbol
        self.decimals = decimals
        self.address = normalize_address(address) if address else derive_address(f"token:{symbol}")
        self.minter = normalize_address(minter) if minter else None
        self.state = TokenState()
        ledger.register(self)

    @property
    def total_supply(self) -> int:
        return self.state.total_supply

    def balance_of(self, holder: str) -> int:
        return self.state.balances.get(normalize_address(holder), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowances.get(normalize_address(owner), {}).get(normalize_address(spender), 0)

    def approve(self, caller: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("allowance must be >= 0")
        owner = normalize_address(caller)
        self.state.allowances.setdefault(owner, {})[normalize_address(spender)] = amount

    def transfer(self, caller: str, to: str, amount: int) -> None:
        self._move(normalize_address(caller), normalize_address(to), amount)

    def transfer_from(self, caller: str, owner: str, to: str, amount: int) -> None:
        """Move `amount` from `owner` to `to`, spending `caller`'s allowance."""
        self.spend_allowance(owner, caller, amount)
        self._move(normalize_address(owner), normalize_address(to), amount)

    def spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        owner_key = normalize_address(owner)
        spender_key = normalize_address(spender)
        if owner_key == spender_key:
            return
        current = self.allowance(owner_key, spender_key)
        if current == MAX_UINT256:
            return
        if current < amount:
            raise InsufficientBalance(f"{self.symbol}: allowance {current} < {amount} for {spender_key}")
        self.state.allowances[owner_key][spender_key] = current - amount

    def mint(self, caller: str, to: str, amount: int) -> None:
        self._check_minter(caller)
        if amount < 0:
            raise InvalidAmount("mint amount must be >= 0")
        key = normalize_address(to)
        self.state.balances[key] = self.state.balances.get(key, 0) + amount
        self.state.total_supply += amount

    def burn(self, caller: str, holder: str, amount: int) -> None:
        self._check_minter(caller)
        key = normalize_address(holder)
        balance = self.state.balances.get(key, 0)
        if amount < 0 or balance < amount:
            raise InsufficientBalance(f"{self.symbol}: cannot burn {amount} from {key} (balance {balance})")
        self.state.balances[key] = balance - amount
        self.state.total_supply -= amount

    def holders(self) -> dict[str, int]:
        return {k: v for k, v in self.state.balances.items() if v}

    def _check_minter(self, caller: str) -> None:
        if self.minter is not None and normalize_address(caller) != self.minter:
            raise AuthorizationError(f"{self.symbol}: {caller} is not the minter")

    def _move(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("transfer amount must be >= 0")
        balance = self.state.balances.get(sender, 0)
        if balance < amount:
            raise InsufficientBalance(f"{self.symbol}: balance {balance} < {amount} for {sender}")
        self.state.balances[sender] = balance - amount
        self.state.balances[to] = self.state.balances.get(to, 0) + amount
