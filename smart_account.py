"""
Main relay service orchestration

RelayService is built once at startup and holds every long-lived handle
(chain node, bundler, paymaster, relay key). Request flows are stateless:
nonces, sender addresses and gas prices are queried fresh each time.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.providers.rpc.utils import ExceptionRetryConfiguration

from account_resolver import SenderResolver
from bundler import BundlerClient
from config import DEFAULT_MAX_FEE_PER_GAS, RelayConfig
from dispatcher import DispatchResult, UserOperationDispatcher
from entry_point import ENTRY_POINT_ABI
from errors import ConfigurationError, InputValidationError, RelayError, SignatureError
from paymaster import PaymasterClient
from signer import OwnerKey, recover_user_operation_signer, seal_user_operation
from user_operations import (
    Action,
    ActionKind,
    SignatureState,
    UserOperation,
    create_user_operation,
    user_operation_from_rpc_format,
)

logger = logging.getLogger(__name__)

# Chain node methods without side effects; only these are retried
READ_ONLY_METHODS = (
    "eth_chainId",
    "eth_gasPrice",
    "eth_call",
    "eth_getTransactionCount",
    "eth_getTransactionReceipt",
    "eth_estimateGas",
    "eth_blockNumber",
    "eth_getBlockByNumber",
    "eth_maxPriorityFeePerGas",
    "eth_feeHistory",
)

# Transport failures worth another attempt on a read-only call
RETRYABLE_ERRORS = (requests.ConnectionError, requests.HTTPError, requests.Timeout)


def make_web3(config: RelayConfig) -> Web3:
    return Web3(Web3.HTTPProvider(
        config.eth_client_url,
        request_kwargs={"timeout": config.rpc_timeout},
        exception_retry_configuration=ExceptionRetryConfiguration(
            errors=RETRYABLE_ERRORS,
            retries=config.read_retries,
            method_allowlist=list(READ_ONLY_METHODS),
        ),
    ))


class RelayService:
    """Builds, sponsors, seals and submits UserOperations for counterfactual accounts"""

    def __init__(
        self,
        config: RelayConfig,
        web3: Optional[Web3] = None,
        resolver=None,
        bundler: Optional[BundlerClient] = None,
        paymaster: Optional[PaymasterClient] = None,
    ):
        self.config = config
        if web3 is None:
            if not config.eth_client_url:
                raise ConfigurationError("ERC4337_API_ETH_CLIENT_URL is required")
            web3 = make_web3(config)
        self.web3 = web3

        if config.chain_id is not None:
            self.chain_id = config.chain_id
        else:
            try:
                self.chain_id = int(self.web3.eth.chain_id)
            except (Web3Exception, RequestException) as e:
                logger.error(f"failed to connect to blockchain at {config.eth_client_url}, error {e}")
                raise ConfigurationError(f"Failed to fetch chain id: {e}") from e
        logger.info(f"connected to chain with url {config.eth_client_url}, got chain id {self.chain_id}")

        self.key = OwnerKey(config.eth_client_sk) if config.eth_client_sk else None
        if self.key is None:
            logger.warning("No relay key configured; sponsorship and relay sealing are disabled")

        self.entry_point_address = Web3.to_checksum_address(config.entry_point_address)
        self.entry_point = self.web3.eth.contract(address=self.entry_point_address, abi=ENTRY_POINT_ABI)

        self.resolver = resolver or SenderResolver(self.entry_point, config.account_factory_address)
        self.bundler = bundler or BundlerClient(config.bundler_url, self.entry_point_address, timeout=config.rpc_timeout)
        self.paymaster = paymaster or PaymasterClient(
            config.paymaster_url,
            self.entry_point_address,
            self.chain_id,
            self.key,
            paymaster_type=config.paymaster_type,
            timeout=config.rpc_timeout,
        )
        self.dispatcher = UserOperationDispatcher(
            self.web3,
            self.entry_point,
            self.entry_point_address,
            self.chain_id,
            self.bundler,
            key=self.key,
            simulate=config.simulate_user_op,
            simulation_fatal=config.simulation_fatal,
            send_direct=config.send_user_op_direct,
            receipt_timeout=config.receipt_timeout,
        )

    def get_sender_info(self, owner: str, salt: int) -> Tuple[int, str]:
        return self.resolver.resolve(owner, salt)

    def get_sender_address(self, owner: str, salt: int) -> str:
        sender = self.resolver.get_sender_address(owner, salt)
        logger.info(f"senderAddr: {sender}, ownerAddr: {owner}")
        return sender

    def build_user_operation(self, action: Action, owner: str, salt: int, use_gas_price: bool) -> UserOperation:
        """Resolve the owner's account and build an unsigned UserOperation for `action`"""
        nonce, sender = self.resolver.resolve(owner, salt)
        max_fee_per_gas = self._get_gas_price() if use_gas_price else DEFAULT_MAX_FEE_PER_GAS
        return create_user_operation(
            action,
            nonce=nonce,
            owner=owner,
            sender=sender,
            salt=salt,
            max_fee_per_gas=max_fee_per_gas,
            factory=self.config.account_factory_address,
        )

    def approve(self, target: str, spender: str, owner: str, salt: int, amount: int) -> UserOperation:
        return self.build_user_operation(Action(ActionKind.APPROVE, target, spender, amount), owner, salt, use_gas_price=False)

    def mint(self, target: str, to: str, owner: str, salt: int, amount: int) -> UserOperation:
        return self.build_user_operation(Action(ActionKind.MINT, target, to, amount), owner, salt, use_gas_price=False)

    def withdraw_to(self, target: str, to: str, owner: str, salt: int, amount: int) -> UserOperation:
        """Sponsored but unsigned withdrawTo operation for the owner to sign"""
        user_op = self.build_user_operation(Action(ActionKind.WITHDRAW_TO, target, to, amount), owner, salt, use_gas_price=True)
        return self.paymaster.sponsor_user_operation(user_op)

    def transfer(self, target: str, to: str, owner: str, salt: int, amount: int) -> Tuple[UserOperation, DispatchResult]:
        """Build, sponsor, seal with the relay key and submit a transfer"""
        user_op = self.build_user_operation(Action(ActionKind.TRANSFER, target, to, amount), owner, salt, use_gas_price=True)
        user_op = self.paymaster.sponsor_user_operation(user_op)
        if self.key is None:
            raise ConfigurationError("Relay signing key is required to seal a transfer")
        # sponsor fields changed the hash, so the final seal comes last
        user_op = seal_user_operation(user_op, self.entry_point_address, self.chain_id, self.key)
        return user_op, self.dispatcher.dispatch(user_op)

    def send_user_operation(self, op_data: Dict[str, Any], entry_point: Optional[str] = None, salt: int = 0) -> DispatchResult:
        """Verify an owner-signed UserOperation and submit it without re-signing"""
        if entry_point is not None and Web3.to_checksum_address(entry_point) != self.entry_point_address:
            raise InputValidationError(f"Unsupported entry point {entry_point}, expected {self.entry_point_address}")

        try:
            user_op = user_operation_from_rpc_format(op_data)
        except ValueError as e:
            raise InputValidationError(f"Invalid user operation: {e}") from e

        op_hash, owner = recover_user_operation_signer(user_op, self.entry_point_address, self.chain_id)
        sender = self.resolver.get_sender_address(owner, salt)
        if sender != user_op.sender:
            raise SignatureError(
                f"op sender address does not match recovered sender address: owner '{owner}', "
                f"sender '{sender}', userop sender '{user_op.sender}', op hash '0x{op_hash.hex()}'"
            )

        verified = user_op.evolve(signature_state=SignatureState.FINAL_SEALED)
        return self.dispatcher.dispatch(verified)

    def _get_gas_price(self) -> int:
        try:
            return int(self.web3.eth.gas_price)
        except (Web3Exception, RequestException) as e:
            raise RelayError(f"Failed to fetch gas price: {e}") from e


def create_relay_service() -> RelayService:
    """Create a relay service from the environment"""
    return RelayService(RelayConfig.from_env())
