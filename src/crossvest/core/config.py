"""
crossvest Configuration

Supports the local development node, the public devnode and the production
network with separate configurations.

All settings are read from ``CROSSVEST_*`` environment variables at import
time. Invalid values raise ConfigurationError immediately.
"""

from __future__ import annotations

import logging
import os
from enum import Enum

from .ledger_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    LOCALHOST = "localhost"
    DEVNODE = "devnode"
    UNIQUE = "unique"


class RefundPolicy(Enum):
    STRICT = "strict"
    CAP = "cap"


def _get_int(env_var: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var},
        ) from exc
    if minimum is not None and value < minimum:
        raise ConfigurationError(
            f"{env_var} must be >= {minimum}, got {value}",
            details={"env_var": env_var},
        )
    return value


def _get_choice(env_var: str, enum_type: type[Enum], default: Enum) -> Enum:
    raw = os.getenv(env_var, "").strip().lower()
    if not raw:
        return default
    try:
        return enum_type(raw)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(
            f"{env_var} must be one of: {choices}; got {raw!r}",
            details={"env_var": env_var},
        ) from exc


# Get network type from environment variable
NETWORK = _get_choice("CROSSVEST_NETWORK", NetworkType, NetworkType.LOCALHOST)

SS58_FORMAT = _get_int("CROSSVEST_SS58_FORMAT", 42, minimum=0)
TOKEN_DECIMALS = _get_int("CROSSVEST_TOKEN_DECIMALS", 18, minimum=0)
BATCH_SIZE = _get_int("CROSSVEST_BATCH_SIZE", 250, minimum=1)
SNAPSHOT_THRESHOLD = _get_int("CROSSVEST_SNAPSHOT_THRESHOLD", 25, minimum=0)
EXCHANGE_RATE = _get_int("CROSSVEST_EXCHANGE_RATE", 25, minimum=1)
REFUND_POLICY = _get_choice("CROSSVEST_REFUND_POLICY", RefundPolicy, RefundPolicy.STRICT)
STATE_DB_PATH = os.getenv(
    "CROSSVEST_STATE_DB",
    os.path.join(os.getcwd(), "crossvest_state.db"),
)
LOG_LEVEL = os.getenv("CROSSVEST_LOG_LEVEL", "INFO").strip().upper() or "INFO"
if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    raise ConfigurationError(f"CROSSVEST_LOG_LEVEL is not a logging level: {LOG_LEVEL}")
ADMIN_ADDRESS = os.getenv("CROSSVEST_ADMIN", "").strip()


class LocalhostConfig:
    """Local development node"""

    NETWORK_TYPE = NetworkType.LOCALHOST
    CHAIN_ID = 8880
    RPC_URL = os.getenv("CROSSVEST_RPC_URL", "http://127.0.0.1:9699/relay-unique/")
    ADMIN_ADDRESS = ADMIN_ADDRESS
    SS58_FORMAT = SS58_FORMAT
    TOKEN_DECIMALS = TOKEN_DECIMALS
    BATCH_SIZE = BATCH_SIZE
    REFUND_POLICY = REFUND_POLICY
    STATE_DB_PATH = STATE_DB_PATH


class DevnodeConfig:
    """Public development node"""

    NETWORK_TYPE = NetworkType.DEVNODE
    CHAIN_ID = 8882
    RPC_URL = os.getenv("CROSSVEST_RPC_URL", "https://rpc.web.uniquenetwork.dev")
    ADMIN_ADDRESS = ADMIN_ADDRESS
    SS58_FORMAT = SS58_FORMAT
    TOKEN_DECIMALS = TOKEN_DECIMALS
    BATCH_SIZE = BATCH_SIZE
    REFUND_POLICY = REFUND_POLICY
    STATE_DB_PATH = STATE_DB_PATH


class UniqueConfig:
    """Production network"""

    NETWORK_TYPE = NetworkType.UNIQUE
    CHAIN_ID = 8880
    RPC_URL = os.getenv("CROSSVEST_RPC_URL", "https://ws.unique.network")
    ADMIN_ADDRESS = ADMIN_ADDRESS
    SS58_FORMAT = SS58_FORMAT
    TOKEN_DECIMALS = TOKEN_DECIMALS
    BATCH_SIZE = BATCH_SIZE
    REFUND_POLICY = REFUND_POLICY
    STATE_DB_PATH = STATE_DB_PATH


# Select config based on network
if NETWORK is NetworkType.UNIQUE:
    if not ADMIN_ADDRESS:
        raise ConfigurationError(
            "CRITICAL: CROSSVEST_ADMIN environment variable required for the production network."
        )
    Config = UniqueConfig
elif NETWORK is NetworkType.DEVNODE:
    Config = DevnodeConfig
else:
    Config = LocalhostConfig

logger.debug(
    "Configuration loaded",
    extra={"event": "config.loaded", "network": NETWORK.value, "refund_policy": REFUND_POLICY.value},
)

__all__ = [
    "Config",
    "NetworkType",
    "RefundPolicy",
    "LocalhostConfig",
    "DevnodeConfig",
    "UniqueConfig",
    "SS58_FORMAT",
    "TOKEN_DECIMALS",
    "BATCH_SIZE",
    "SNAPSHOT_THRESHOLD",
    "EXCHANGE_RATE",
    "REFUND_POLICY",
    "STATE_DB_PATH",
    "LOG_LEVEL",
    "ADMIN_ADDRESS",
]
