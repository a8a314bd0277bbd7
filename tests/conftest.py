from unittest.mock import MagicMock

import pytest
from eth_abi import encode
from web3 import Web3
from web3.providers import BaseProvider

from config import DEFAULT_ACCOUNT_FACTORY, ENTRYPOINT_V06, RelayConfig
from signer import OwnerKey
from smart_account import RelayService
from user_operations import Action, ActionKind, create_user_operation

CHAIN_ID = 137
RELAY_SK = "0x" + "11" * 32
OWNER_SK = "0x" + "22" * 32

TOKEN = Web3.to_checksum_address("0x" + "a1" * 20)
SPENDER = Web3.to_checksum_address("0x" + "b2" * 20)
RECIPIENT = Web3.to_checksum_address("0x" + "c3" * 20)
SENDER = Web3.to_checksum_address("0x" + "d4" * 20)


def revert_data(selector: bytes, types, values) -> str:
    return "0x" + (selector + encode(types, values)).hex()


class RevertingProvider(BaseProvider):
    """Chain node whose eth_call always reverts with `revert`"""

    def __init__(self, revert: str):
        super().__init__()
        self.revert = revert
        self.requests = []

    def make_request(self, method, params):
        self.requests.append((method, params))
        if method == "eth_chainId":
            return {"jsonrpc": "2.0", "id": 1, "result": hex(CHAIN_ID)}
        if method == "eth_call":
            return {
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": 3, "message": "execution reverted", "data": self.revert},
            }
        raise NotImplementedError(method)


@pytest.fixture
def relay_key():
    return OwnerKey(RELAY_SK)


@pytest.fixture
def owner_key():
    return OwnerKey(OWNER_SK)


@pytest.fixture
def user_op(owner_key):
    return create_user_operation(
        Action(ActionKind.TRANSFER, TOKEN, RECIPIENT, 1000),
        nonce=0,
        owner=owner_key.address,
        sender=SENDER,
        salt=1,
        max_fee_per_gas=2_000_000_000,
        factory=DEFAULT_ACCOUNT_FACTORY,
    )


@pytest.fixture
def relay_config():
    return RelayConfig(
        eth_client_url="http://node.invalid",
        bundler_url="http://bundler.invalid",
        paymaster_url="http://paymaster.invalid",
        eth_client_sk=RELAY_SK,
        entry_point_address=ENTRYPOINT_V06,
        chain_id=CHAIN_ID,
    )


@pytest.fixture
def make_service(relay_config):
    """RelayService over mocked network handles"""

    def _make(resolver, **overrides):
        for name, value in overrides.items():
            setattr(relay_config, name, value)
        return RelayService(
            relay_config,
            web3=MagicMock(),
            resolver=resolver,
            bundler=MagicMock(),
            paymaster=MagicMock(),
        )

    return _make
