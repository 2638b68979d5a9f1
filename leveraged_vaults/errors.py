"""Error taxonomy for the vault and strategy engines.

Every error is raised synchronously, after the surrounding transaction has rolled back, so a
failed call always leaves the pool in its prior state.
"""


class VaultError(Exception):
    """Base class for all engine errors."""


class AuthorizationError(VaultError):
    """Caller lacks the role tier an operation requires."""


class CapacityError(VaultError):
    """A deposit or allocation would breach a configured ceiling."""


class CapExceeded(CapacityError):
    """Deposit or mint would push total assets past the TVL cap."""


class AllocationCapExceeded(CapacityError):
    """Sum of strategy allocations would exceed 10000 BPS."""


class LiquidityShortfall(VaultError):
    """No liquidity at all could be recovered for a withdrawal."""


class BoundViolation(VaultError):
    """A parameter is outside its allowed range."""


class InvalidLtvBounds(BoundViolation):
    """Leverage parameters violate `target < max <= 100%`."""


class InvalidAmount(BoundViolation):
    """Zero or otherwise unusable amount."""


class InvalidFee(BoundViolation):
    """Fee configuration out of range."""


class TimelockViolation(VaultError):
    """Upgrade cooldown misuse."""


class CooldownNotElapsed(TimelockViolation):
    """Upgrade attempted before the cooldown elapsed."""


class StateViolation(VaultError):
    """Operation is invalid in the current lifecycle state."""


class ShutdownActive(StateViolation):
    """Vault is in emergency shutdown."""


class StrategyPaused(StateViolation):
    """Strategy deposits are paused."""


class StrategyRetired(StateViolation):
    """Strategy has been retired."""


class UnknownStrategy(StateViolation):
    """Address is not a registered strategy."""


class InsufficientHistory(StateViolation):
    """Not enough harvest samples for the requested window."""


class InsufficientBalance(VaultError):
    """Token balance or allowance too low for a transfer."""


class ReentrancyError(VaultError):
    """A guarded operation was re-entered before it finished."""
