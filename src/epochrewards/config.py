"""
epochrewards/config.py

Configuration constants and settings for epochrewards.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ConfigError


# ============================================================================
# STAKING CONTRACT SEMANTICS
# ============================================================================

# Reward units emitted per second across all stakers (contract REWARD_RATE)
REWARD_RATE = 1 * 10**27

# Fixed-point scale of the reward-per-token accumulator (contract WAD)
PRECISION_SCALE = 10**18

# rFOX staking proxies on Arbitrum One
STAKING_CONTRACT_FOX = "0xac2a4fd70bcd8bab0662960455c363735f0e2b56"
STAKING_CONTRACT_UNIV2_ETH_FOX = "0x83b51b7605d2e277e03a7d6451b1efc0e5253a2f"

STAKING_CONTRACTS: List[str] = [
    STAKING_CONTRACT_FOX,
    STAKING_CONTRACT_UNIV2_ETH_FOX,
]

# The number of blocks to query at a time when fetching logs
GET_LOGS_BLOCK_STEP = 20_000

# Tolerated drift between replayed reward units and rate * seconds (0.01%)
REWARD_UNITS_MARGIN = "0.0001"


# ============================================================================
# PAYOUT (THORCHAIN)
# ============================================================================

RUNE_DECIMALS = 8
RUNE_DENOM = "rune"
THORCHAIN_CHAIN_ID = "thorchain-1"

# Network fee reserved per outbound transfer (0.02 RUNE)
FEE_RESERVE_PER_TRANSFER = 2_000_000

# Funding wait: poll every 30 seconds, no timeout (operator supervised)
FUNDING_POLL_INTERVAL = 30.0
FUNDING_MAX_QUERY_FAILURES = 5

# Broadcast: 2 retries after the first attempt, short backoff
BROADCAST_MAX_RETRIES = 2
BROADCAST_RETRY_DELAY = 1.0

# Multisig treasury that funds the disbursing hot wallet
DEFAULT_FUNDING_SOURCE_ADDRESS = "thor122h9hlrugzdny9ct95z6g7afvpzu34s73uklju"

DEFAULT_RFOX_DIR = Path.home() / "rfox"


# ============================================================================
# SETTINGS
# ============================================================================

@dataclass
class Settings:
    """Endpoints and paths needed to process and pay out an epoch."""
    rpc_url: str
    thornode_url: str
    unchained_url: str = ""
    pinata_api_key: str = ""
    pinata_secret_api_key: str = ""
    pinata_gateway_url: str = ""
    pinata_gateway_api_key: str = ""
    rfox_dir: Path = DEFAULT_RFOX_DIR
    funding_source_address: str = DEFAULT_FUNDING_SOURCE_ADDRESS
    staking_contracts: List[str] = field(default_factory=lambda: list(STAKING_CONTRACTS))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        RPC_URL and THORNODE_URL are required; everything else falls back
        to defaults. Raises ConfigError naming the first missing variable.
        """
        env = os.environ if environ is None else environ

        for name in ("RPC_URL", "THORNODE_URL"):
            if not env.get(name):
                raise ConfigError(f"{name} not set, please fill out your environment")

        contracts = env.get("STAKING_CONTRACTS")
        rfox_dir = env.get("RFOX_DIR")

        return cls(
            rpc_url=env["RPC_URL"],
            thornode_url=env["THORNODE_URL"].rstrip("/"),
            unchained_url=env.get("UNCHAINED_URL", "").rstrip("/"),
            pinata_api_key=env.get("PINATA_API_KEY", ""),
            pinata_secret_api_key=env.get("PINATA_SECRET_API_KEY", ""),
            pinata_gateway_url=env.get("PINATA_GATEWAY_URL", "").rstrip("/"),
            pinata_gateway_api_key=env.get("PINATA_GATEWAY_API_KEY", ""),
            rfox_dir=Path(rfox_dir).expanduser() if rfox_dir else DEFAULT_RFOX_DIR,
            funding_source_address=env.get("FUNDING_SOURCE_ADDRESS", DEFAULT_FUNDING_SOURCE_ADDRESS),
            staking_contracts=(
                [c.strip().lower() for c in contracts.split(",") if c.strip()]
                if contracts else list(STAKING_CONTRACTS)
            ),
        )

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named settings is empty."""
        for name in names:
            if not getattr(self, name):
                raise ConfigError(f"{name.upper()} not set, please fill out your environment")
