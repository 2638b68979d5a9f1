"""Role tiers and the authorization matrix.

Every state-mutating entry point names its `Operation`; `is_authorized` is a pure lookup so the
matrix can be tested on its own, and `AccessControl.check` applies it to a caller's granted tier.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Iterable

from leveraged_vaults.errors import AuthorizationError
from leveraged_vaults.formatters import normalize_address
from leveraged_vaults.ledger import Ledger

logger = logging.getLogger(__name__)


class Role(IntEnum):
    """Ordered tiers; a higher tier holds every capability of the lower ones."""

    UNASSIGNED = 0
    STRATEGIST = 1
    GUARDIAN = 2
    ADMIN = 3
    SUPER_ADMIN = 4


class Operation(str, Enum):
    # Vault
    DEPOSIT = "deposit"
    MINT = "mint"
    WITHDRAW = "withdraw"
    REDEEM = "redeem"
    ADD_STRATEGY = "add_strategy"
    UPDATE_STRATEGY_ALLOC_BPS = "update_strategy_alloc_bps"
    REVOKE_STRATEGY = "revoke_strategy"
    SET_WITHDRAWAL_ORDER = "set_withdrawal_order"
    EMERGENCY_SHUTDOWN_ON = "set_emergency_shutdown:true"
    EMERGENCY_SHUTDOWN_OFF = "set_emergency_shutdown:false"
    UPDATE_TVL_CAP = "update_tvl_cap"
    SET_LOCKED_PROFIT_DEGRADATION = "set_locked_profit_degradation"
    # Strategy
    HARVEST = "harvest"
    STRATEGY_DEPOSIT = "strategy_deposit"
    SET_LEVERAGE_PARAMS = "set_leverage_params"
    REBALANCE = "rebalance"
    UPDATE_HARVEST_LOG_CADENCE = "update_harvest_log_cadence"
    SET_EMERGENCY_EXIT = "set_emergency_exit"
    PANIC = "panic"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    UPDATE_FEES = "update_fees"
    # Upgrade cooldown
    INITIATE_UPGRADE_COOLDOWN = "initiate_upgrade_cooldown"
    UPGRADE = "upgrade"
    # Roles
    GRANT_ROLE = "grant_role"


AUTHORIZATION_MATRIX: dict[Operation, Role] = {
    Operation.DEPOSIT: Role.UNASSIGNED,
    Operation.MINT: Role.UNASSIGNED,
    Operation.WITHDRAW: Role.UNASSIGNED,
    Operation.REDEEM: Role.UNASSIGNED,
    Operation.HARVEST: Role.UNASSIGNED,
    Operation.UPDATE_STRATEGY_ALLOC_BPS: Role.STRATEGIST,
    Operation.STRATEGY_DEPOSIT: Role.STRATEGIST,
    Operation.SET_LEVERAGE_PARAMS: Role.STRATEGIST,
    Operation.REBALANCE: Role.STRATEGIST,
    Operation.UPDATE_HARVEST_LOG_CADENCE: Role.STRATEGIST,
    Operation.INITIATE_UPGRADE_COOLDOWN: Role.STRATEGIST,
    Operation.EMERGENCY_SHUTDOWN_ON: Role.GUARDIAN,
    Operation.SET_EMERGENCY_EXIT: Role.GUARDIAN,
    Operation.PANIC: Role.GUARDIAN,
    Operation.PAUSE: Role.GUARDIAN,
    Operation.EMERGENCY_SHUTDOWN_OFF: Role.ADMIN,
    Operation.ADD_STRATEGY: Role.ADMIN,
    Operation.REVOKE_STRATEGY: Role.ADMIN,
    Operation.SET_WITHDRAWAL_ORDER: Role.ADMIN,
    Operation.UPDATE_TVL_CAP: Role.ADMIN,
    Operation.SET_LOCKED_PROFIT_DEGRADATION: Role.ADMIN,
    Operation.UNPAUSE: Role.ADMIN,
    Operation.UPDATE_FEES: Role.ADMIN,
    Operation.GRANT_ROLE: Role.ADMIN,
    Operation.UPGRADE: Role.SUPER_ADMIN,
}


def required_role(operation: Operation) -> Role:
    """Minimum tier for `operation`."""
    return AUTHORIZATION_MATRIX[operation]


def is_authorized(role: Role, operation: Operation) -> bool:
    return role >= AUTHORIZATION_MATRIX[operation]


@dataclass
class AccessState:
    # address -> Role value; absent means UNASSIGNED.
    roles: dict[str, int] = field(default_factory=dict)


class AccessControl:
    """Role assignments shared by a vault and its strategies."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        super_admins: Iterable[str] = (),
        admins: Iterable[str] = (),
        guardians: Iterable[str] = (),
        strategists: Iterable[str] = (),
    ) -> None:
        self.ledger = ledger
        self.state = AccessState()
        for role, accounts in (
            (Role.STRATEGIST, strategists),
            (Role.GUARDIAN, guardians),
            (Role.ADMIN, admins),
            (Role.SUPER_ADMIN, super_admins),
        ):
            for account in accounts:
                self.state.roles[normalize_address(account)] = int(role)
        ledger.register(self)

    def role_of(self, account: str) -> Role:
        return Role(self.state.roles.get(normalize_address(account), Role.UNASSIGNED))

    def check(self, caller: str, operation: Operation) -> None:
        """Raise `AuthorizationError` unless `caller` may perform `operation`."""
        role = self.role_of(caller)
        if not is_authorized(role, operation):
            raise AuthorizationError(
                f"{caller} ({role.name}) may not {operation.value}; requires {required_role(operation).name}"
            )

    def grant_role(self, caller: str, account: str, role: Role) -> None:
        """Assign `role` to `account`. Callers cannot grant or replace a tier above their own."""
        with self.ledger.atomic():
            self.check(caller, Operation.GRANT_ROLE)
            caller_role = self.role_of(caller)
            if role > caller_role or self.role_of(account) > caller_role:
                raise AuthorizationError(f"{caller} ({caller_role.name}) cannot assign {role.name}")
            self.state.roles[normalize_address(account)] = int(role)
            logger.info("role %s granted to %s by %s", role.name, account, caller)

    def revoke_role(self, caller: str, account: str) -> None:
        self.grant_role(caller, account, Role.UNASSIGNED)
