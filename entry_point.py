"""
EntryPoint v0.6 ABI fragments, UserOperation hashing and revert decoding

Several entry-point methods (getSenderAddress, simulateHandleOp) return their
result by reverting with a custom error. The helpers here turn such revert
payloads into typed values by looking at the leading selector bytes.
"""

import logging
from dataclasses import dataclass
from typing import Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from user_operations import UserOperation

logger = logging.getLogger(__name__)

SENDER_ADDRESS_RESULT_SELECTOR = Web3.keccak(text="SenderAddressResult(address)")[:4]
FAILED_OP_SELECTOR = Web3.keccak(text="FailedOp(uint256,string)")[:4]
VALIDATION_RESULT_SELECTOR = Web3.keccak(
    text="ValidationResult((uint256,uint256,bool,uint48,uint48,bytes),(uint256,uint256),(uint256,uint256),(uint256,uint256))"
)[:4]
EXECUTION_RESULT_SELECTOR = Web3.keccak(text="ExecutionResult(uint256,uint256,uint48,uint48,bool,bytes)")[:4]

_USER_OPERATION_COMPONENTS = [
    {"name": "sender", "type": "address"},
    {"name": "nonce", "type": "uint256"},
    {"name": "initCode", "type": "bytes"},
    {"name": "callData", "type": "bytes"},
    {"name": "callGasLimit", "type": "uint256"},
    {"name": "verificationGasLimit", "type": "uint256"},
    {"name": "preVerificationGas", "type": "uint256"},
    {"name": "maxFeePerGas", "type": "uint256"},
    {"name": "maxPriorityFeePerGas", "type": "uint256"},
    {"name": "paymasterAndData", "type": "bytes"},
    {"name": "signature", "type": "bytes"},
]

ENTRY_POINT_ABI = [
    {
        "inputs": [{"name": "initCode", "type": "bytes"}],
        "name": "getSenderAddress",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "sender", "type": "address"}, {"name": "key", "type": "uint192"}],
        "name": "getNonce",
        "outputs": [{"name": "nonce", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "ops", "type": "tuple[]", "components": _USER_OPERATION_COMPONENTS},
            {"name": "beneficiary", "type": "address"},
        ],
        "name": "handleOps",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "op", "type": "tuple", "components": _USER_OPERATION_COMPONENTS},
            {"name": "target", "type": "address"},
            {"name": "targetCallData", "type": "bytes"},
        ],
        "name": "simulateHandleOp",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def get_user_op_hash(user_op: UserOperation, entry_point: str, chain_id: int) -> bytes:
    """Canonical 32-byte UserOperation hash; the signature is not covered"""
    packed = encode(
        [
            "address",
            "uint256",
            "bytes32",
            "bytes32",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "bytes32",
        ],
        [
            Web3.to_checksum_address(user_op.sender),
            user_op.nonce,
            Web3.keccak(user_op.init_code),
            Web3.keccak(user_op.call_data),
            user_op.call_gas_limit,
            user_op.verification_gas_limit,
            user_op.pre_verification_gas,
            user_op.max_fee_per_gas,
            user_op.max_priority_fee_per_gas,
            Web3.keccak(user_op.paymaster_and_data),
        ],
    )
    return bytes(
        Web3.keccak(
            encode(
                ["bytes32", "address", "uint256"],
                [Web3.keccak(packed), Web3.to_checksum_address(entry_point), chain_id],
            )
        )
    )


def user_operation_to_tuple(user_op: UserOperation) -> Tuple:
    """Positional form expected by handleOps / simulateHandleOp"""
    return (
        Web3.to_checksum_address(user_op.sender),
        user_op.nonce,
        user_op.init_code,
        user_op.call_data,
        user_op.call_gas_limit,
        user_op.verification_gas_limit,
        user_op.pre_verification_gas,
        user_op.max_fee_per_gas,
        user_op.max_priority_fee_per_gas,
        user_op.paymaster_and_data,
        user_op.signature,
    )


@dataclass(frozen=True)
class SenderAddressResult:
    sender: str


@dataclass(frozen=True)
class FailedOp:
    op_index: int
    reason: str


@dataclass(frozen=True)
class ValidationResult:
    pre_op_gas: int
    prefund: int
    sig_failed: bool
    valid_after: int
    valid_until: int
    sender_stake: int
    sender_unstake_delay: int


@dataclass(frozen=True)
class ExecutionResult:
    pre_op_gas: int
    paid: int
    target_success: bool


@dataclass(frozen=True)
class UnknownRevert:
    data: bytes


EntryPointRevert = Union[SenderAddressResult, FailedOp, ValidationResult, ExecutionResult, UnknownRevert]


def decode_entry_point_revert(data) -> EntryPointRevert:
    """Decode an entry-point custom error from raw revert data (hex string or bytes)"""
    try:
        raw = bytes(HexBytes(data))
    except (TypeError, ValueError):
        logger.warning(f"Revert data is not hex: {data!r}")
        return UnknownRevert(data=b"")

    selector, payload = raw[:4], raw[4:]
    try:
        if selector == SENDER_ADDRESS_RESULT_SELECTOR:
            (sender,) = decode(["address"], payload)
            return SenderAddressResult(sender=Web3.to_checksum_address(sender))
        if selector == FAILED_OP_SELECTOR:
            op_index, reason = decode(["uint256", "string"], payload)
            return FailedOp(op_index=op_index, reason=reason)
        if selector == VALIDATION_RESULT_SELECTOR:
            return_info, sender_info, _factory_info, _paymaster_info = decode(
                [
                    "(uint256,uint256,bool,uint48,uint48,bytes)",
                    "(uint256,uint256)",
                    "(uint256,uint256)",
                    "(uint256,uint256)",
                ],
                payload,
            )
            return ValidationResult(
                pre_op_gas=return_info[0],
                prefund=return_info[1],
                sig_failed=return_info[2],
                valid_after=return_info[3],
                valid_until=return_info[4],
                sender_stake=sender_info[0],
                sender_unstake_delay=sender_info[1],
            )
        if selector == EXECUTION_RESULT_SELECTOR:
            pre_op_gas, paid, _valid_after, _valid_until, target_success, _target_result = decode(
                ["uint256", "uint256", "uint48", "uint48", "bool", "bytes"], payload
            )
            return ExecutionResult(pre_op_gas=pre_op_gas, paid=paid, target_success=target_success)
    except DecodingError as e:
        logger.warning(f"Malformed revert payload for selector 0x{selector.hex()}: {e}")

    return UnknownRevert(data=raw)
