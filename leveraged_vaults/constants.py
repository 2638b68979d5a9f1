"""Constants and configuration for the leveraged vault engine."""

# Basis points: 10_000 BPS == 100%.
TOTAL_BASIS_POINTS = 100_00

# Sentinel for "no cap" / "no limit", mirroring the uint256 max used on-chain.
MAX_UINT256 = 2**256 - 1

# Locked profit decays linearly: `lockedProfit * elapsed * degradation / DEGRADATION_COEFFICIENT`.
# A degradation equal to the coefficient releases everything after one second.
DEGRADATION_COEFFICIENT = 10**18
DEFAULT_LOCKED_PROFIT_DEGRADATION = (DEGRADATION_COEFFICIENT * 46) // 10**6  # ~6 hours

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Leverage defaults (target 78%, ceiling 78.4%).
DEFAULT_TARGET_LTV_BPS = 78_00
DEFAULT_MAX_LTV_BPS = 78_40
DEFAULT_LEVERAGE_STEP_SIZE = MAX_UINT256
DEFAULT_MAX_LEVERAGE_STEPS = 10
# Full unwinds (panic, emergency exit, retirement) use their own, larger bound.
MAX_UNWIND_STEPS = 256

# Harvest fees. `total_fee` is charged on gross profit; the caller/treasury split sums to 100%,
# and the strategists take `strategist_fee` of the treasury part.
MAX_TOTAL_FEE_BPS = 10_00
DEFAULT_TOTAL_FEE_BPS = 4_50
DEFAULT_CALL_FEE_BPS = 10_00
DEFAULT_TREASURY_FEE_BPS = 90_00
MAX_STRATEGIST_FEE_BPS = 50_00
DEFAULT_STRATEGIST_FEE_BPS = 25_00

HARVEST_LOG_SIZE = 32
DEFAULT_HARVEST_LOG_CADENCE = 0

UPGRADE_TIMELOCK_SECONDS = 48 * 60 * 60

# Default market parameters used by the simulation collaborators.
DEFAULT_COLLATERAL_FACTOR_BPS = 80_00
DEFAULT_SUPPLY_APR_BPS = 4_00
DEFAULT_BORROW_APR_BPS = 3_00
DEFAULT_ASSET_DECIMALS = 6

# Persistence configuration
STATE_DIR_NAME = ".leveraged_vaults_state"
STATE_VERSION = "1"  # Increment to invalidate all snapshots
CONFIG_ENV_VAR = "LEVERAGED_VAULTS_CONFIG"
