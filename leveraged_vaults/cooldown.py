"""One-shot timelock gating strategy implementation upgrades.

UNSET -> INITIATED -> EXPIRED. An upgrade is allowed only once the timelock has expired, and a
successful upgrade resets the guard to UNSET.
"""

import logging
from enum import Enum

from leveraged_vaults.access import AccessControl, Operation
from leveraged_vaults.constants import UPGRADE_TIMELOCK_SECONDS
from leveraged_vaults.errors import BoundViolation, CooldownNotElapsed, TimelockViolation
from leveraged_vaults.ledger import Ledger, transactional
from leveraged_vaults.models import CooldownState, Implementation
from leveraged_vaults.strategy import LeverageStrategy

logger = logging.getLogger(__name__)


class CooldownStatus(str, Enum):
    UNSET = "unset"
    INITIATED = "initiated"
    EXPIRED = "expired"


class UpgradeCooldown:
    def __init__(
        self,
        ledger: Ledger,
        access: AccessControl,
        strategy: LeverageStrategy,
        *,
        timelock: int = UPGRADE_TIMELOCK_SECONDS,
    ) -> None:
        if timelock < 0:
            raise BoundViolation("timelock must be >= 0")
        self.ledger = ledger
        self.access = access
        self.strategy = strategy
        self.timelock = timelock
        self.state = CooldownState()
        ledger.register(self)

    def status(self) -> CooldownStatus:
        if self.state.initiated_at is None:
            return CooldownStatus.UNSET
        if self.ledger.now() >= self.state.initiated_at + self.timelock:
            return CooldownStatus.EXPIRED
        return CooldownStatus.INITIATED

    def ready_at(self) -> int | None:
        if self.state.initiated_at is None:
            return None
        return self.state.initiated_at + self.timelock

    @transactional
    def initiate_upgrade_cooldown(self, caller: str) -> int:
        """Start (or restart an expired) cooldown. Returns the time the upgrade becomes allowed."""
        self.access.check(caller, Operation.INITIATE_UPGRADE_COOLDOWN)
        if self.status() is CooldownStatus.INITIATED:
            raise TimelockViolation(f"cooldown already pending until {self.ready_at()}")
        self.state.initiated_at = self.ledger.now()
        logger.info("upgrade cooldown for %s initiated by %s", self.strategy.label, caller)
        return self.state.initiated_at + self.timelock

    @transactional
    def upgrade(self, caller: str, implementation: Implementation) -> None:
        self.access.check(caller, Operation.UPGRADE)
        if self.status() is not CooldownStatus.EXPIRED:
            raise CooldownNotElapsed(f"upgrade not allowed before {self.ready_at()} (now {self.ledger.now()})")
        current = self.strategy.state.implementation_version
        if implementation.version <= current:
            raise BoundViolation(f"implementation version {implementation.version} is not newer than {current}")
        self.strategy.state.implementation_version = implementation.version
        self.state.initiated_at = None
        logger.info("strategy %s upgraded to v%s %s", self.strategy.label, implementation.version, implementation.label)
