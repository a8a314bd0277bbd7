"""
Configuration for the gasless UserOperation relay
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Network constants (EntryPoint v0.6, SimpleAccountFactory v0.6)
ENTRYPOINT_V06 = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
DEFAULT_ACCOUNT_FACTORY = "0x9406Cc6185a346906296840746125a0E44976454"
DEFAULT_CHAIN_ID = 137
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Default gas limits for UserOperations
DEFAULT_GAS_LIMITS = {
    "mint": 200_000,
    "transfer": 200_000,
    "approve": 200_000,
    "withdraw_to": 200_000,
    "verification": 150_000,
    "init_code": 300_000,
    "pre_verification": 100_000,
}

# Used where the node gas price is not consulted (approve, mint)
DEFAULT_MAX_FEE_PER_GAS = 2_000_000_000

PLACEHOLDER_SIGNATURE = b"\x00"
DEFAULT_PAYMASTER_TYPE = "payg"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

ENV_PREFIX = "ERC4337_API_"


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = _get_env(name)
    if raw is None:
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = _get_env(name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in {"1", "true", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")


@dataclass
class RelayConfig:
    """Startup configuration shared by every request"""

    eth_client_url: str = ""
    bundler_url: str = ""
    paymaster_url: str = ""
    # hex private key of the relay; empty disables sponsorship and direct submission
    eth_client_sk: str = ""

    entry_point_address: str = ENTRYPOINT_V06
    account_factory_address: str = DEFAULT_ACCOUNT_FACTORY
    # None means "ask the chain node at startup"
    chain_id: Optional[int] = None
    paymaster_type: str = DEFAULT_PAYMASTER_TYPE

    simulate_user_op: bool = False
    simulation_fatal: bool = False
    send_user_op_direct: bool = False

    rpc_timeout: int = 30
    read_retries: int = 3
    receipt_timeout: int = 120

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "RelayConfig":
        """Build the configuration from ERC4337_API_* variables, reading .env first"""
        load_dotenv(dotenv_path=dotenv_path, override=False)

        return cls(
            eth_client_url=_get_env("ETH_CLIENT_URL", ""),
            bundler_url=_get_env("BUNDLER_URL", ""),
            paymaster_url=_get_env("PAYMASTER_URL", ""),
            eth_client_sk=_get_env("ETH_CLIENT_SK", ""),
            entry_point_address=_get_env("ENTRY_POINT", ENTRYPOINT_V06),
            account_factory_address=_get_env("ACCOUNT_FACTORY", DEFAULT_ACCOUNT_FACTORY),
            chain_id=_get_int("CHAIN_ID", None),
            paymaster_type=_get_env("PAYMASTER_TYPE", DEFAULT_PAYMASTER_TYPE),
            simulate_user_op=_get_bool("SIMULATE_USER_OP", False),
            simulation_fatal=_get_bool("SIMULATION_FATAL", False),
            send_user_op_direct=_get_bool("SEND_USER_OP_DIRECT", False),
            rpc_timeout=_get_int("RPC_TIMEOUT", 30),
            read_retries=_get_int("READ_RETRIES", 3),
            receipt_timeout=_get_int("RECEIPT_TIMEOUT", 120),
            host=_get_env("HOST", DEFAULT_HOST),
            port=_get_int("PORT", DEFAULT_PORT),
        )
