"""
Simulation and submission of sealed UserOperations

A UserOperation is submitted either through a bundler or directly as a
handleOps transaction sent by the relay key. Submission is never retried:
a resent operation can consume the account's nonce twice.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from bundler import BundlerClient
from config import ZERO_ADDRESS
from entry_point import (
    EntryPointRevert,
    ExecutionResult,
    FailedOp,
    UnknownRevert,
    ValidationResult,
    decode_entry_point_revert,
    get_user_op_hash,
    user_operation_to_tuple,
)
from errors import ConfigurationError, JsonRpcError, SignatureError, SubmissionError
from signer import OwnerKey
from user_operations import SignatureState, UserOperation, convert_user_operation_to_rpc_format

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    user_operation_hash: str
    transaction_hash: Optional[str] = None
    simulation: Optional[EntryPointRevert] = None


def simulation_failed(outcome: EntryPointRevert) -> bool:
    if isinstance(outcome, ExecutionResult):
        return False
    if isinstance(outcome, ValidationResult):
        return outcome.sig_failed
    return True


class UserOperationDispatcher:
    """Hashes, optionally simulates, and submits sealed UserOperations"""

    def __init__(
        self,
        web3: Web3,
        entry_point_contract,
        entry_point_address: str,
        chain_id: int,
        bundler: Optional[BundlerClient],
        key: Optional[OwnerKey] = None,
        simulate: bool = False,
        simulation_fatal: bool = False,
        send_direct: bool = False,
        receipt_timeout: int = 120,
    ):
        self.web3 = web3
        self.entry_point = entry_point_contract
        self.entry_point_address = Web3.to_checksum_address(entry_point_address)
        self.chain_id = chain_id
        self.bundler = bundler
        self.key = key
        self.simulate = simulate
        self.simulation_fatal = simulation_fatal
        self.send_direct = send_direct
        self.receipt_timeout = receipt_timeout

    def user_operation_hash(self, user_op: UserOperation) -> str:
        return Web3.to_hex(get_user_op_hash(user_op, self.entry_point_address, self.chain_id))

    def simulate_user_operation(self, user_op: UserOperation) -> Optional[EntryPointRevert]:
        """Run simulateHandleOp without broadcasting and decode its revert

        Returns None when the node could not be reached.
        """
        try:
            self.entry_point.functions.simulateHandleOp(
                user_operation_to_tuple(user_op), ZERO_ADDRESS, b""
            ).call()
        except ContractLogicError as e:
            outcome = decode_entry_point_revert(e.data) if isinstance(e.data, (str, bytes)) else UnknownRevert(b"")
        except (Web3Exception, RequestException) as e:
            logger.error(f"userop simulation could not run: {e}")
            return None
        else:
            logger.warning(f"simulateHandleOp did not revert for sender {user_op.sender}")
            return UnknownRevert(data=b"")

        if isinstance(outcome, ValidationResult):
            logger.info(f"stake: {outcome.sender_stake}, sig failed: {outcome.sig_failed}")
        elif isinstance(outcome, FailedOp):
            logger.info(f"validation for failed op: {outcome.reason}")
        elif isinstance(outcome, ExecutionResult):
            logger.info(f"userop simulation passed: preOpGas {outcome.pre_op_gas}, paid {outcome.paid}, target success {outcome.target_success}")
        else:
            logger.info(f"userop failed simulation with unknown revert 0x{outcome.data.hex()}")
        return outcome

    def dispatch(self, user_op: UserOperation) -> DispatchResult:
        """Submit a FINAL_SEALED operation; SubmissionError carries the op hash on failure"""
        if user_op.signature_state is not SignatureState.FINAL_SEALED:
            raise SignatureError(f"UserOperation for sender {user_op.sender} must be sealed before dispatch")

        op_hash = self.user_operation_hash(user_op)

        simulation = None
        if self.simulate:
            simulation = self.simulate_user_operation(user_op)
            if self.simulation_fatal and (simulation is None or simulation_failed(simulation)):
                raise SubmissionError(f"userop failed simulation: {simulation}", user_operation_hash=op_hash)

        tx_hash = None
        try:
            if self.send_direct:
                tx_hash = self._handle_ops(user_op, op_hash)
            else:
                reply = self._send_to_bundler(user_op)
                if reply.lower() != op_hash.lower():
                    logger.warning(f"Bundler reported op hash {reply}, computed {op_hash}")
                op_hash = reply
        except (JsonRpcError, ConfigurationError, Web3Exception, RequestException) as e:
            logger.error(f"submission of user op hash '{op_hash}' failed: {e}")
            raise SubmissionError(f"submission failed for op hash {op_hash}: {e}", user_operation_hash=op_hash) from e

        logger.info(f"submitted user op hash '{op_hash}', '{convert_user_operation_to_rpc_format(user_op)}'")
        return DispatchResult(user_operation_hash=op_hash, transaction_hash=tx_hash, simulation=simulation)

    def _send_to_bundler(self, user_op: UserOperation) -> str:
        if self.bundler is None:
            raise ConfigurationError("Bundler is not configured")
        return self.bundler.send_user_operation(user_op)

    def _handle_ops(self, user_op: UserOperation, op_hash: str) -> str:
        """Send handleOps([op], relay) from the relay key and wait for the receipt"""
        if self.key is None:
            raise ConfigurationError("Relay signing key is required for direct submission")

        relay_address = self.key.address
        tx = self.entry_point.functions.handleOps(
            [user_operation_to_tuple(user_op)], relay_address
        ).build_transaction({
            "from": relay_address,
            "nonce": self.web3.eth.get_transaction_count(relay_address, "pending"),
            "chainId": self.chain_id,
        })
        signed = self.key.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info(f"handleOps transaction broadcast: {Web3.to_hex(tx_hash)}")

        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise SubmissionError(f"handleOps transaction {Web3.to_hex(tx_hash)} reverted", user_operation_hash=op_hash)
        return Web3.to_hex(tx_hash)
