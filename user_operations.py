"""
UserOperation creation utilities for counterfactual smart accounts
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from eth_abi import encode
from eth_abi.exceptions import EncodingError as AbiEncodingError
from hexbytes import HexBytes
from web3 import Web3

from config import DEFAULT_GAS_LIMITS, PLACEHOLDER_SIGNATURE
from errors import EncodingError

logger = logging.getLogger(__name__)

# Function selector for execute(address,uint256,bytes)
EXECUTE_SELECTOR = Web3.keccak(text="execute(address,uint256,bytes)")[:4]

# Function selector for the factory's createAccount(address,uint256)
CREATE_ACCOUNT_SELECTOR = Web3.keccak(text="createAccount(address,uint256)")[:4]

# Wire names in the order the entry point's UserOperation struct declares them
RPC_FIELDS = (
    "sender",
    "nonce",
    "initCode",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "paymasterAndData",
    "signature",
)


class SignatureState(Enum):
    """Where an operation is in the signing lifecycle"""

    UNSIGNED = "unsigned"
    SPONSOR_PROBE_SEALED = "sponsor_probe_sealed"
    FINAL_SEALED = "final_sealed"


class ActionKind(Enum):
    """Token actions the builder knows how to wrap, keyed to their ABI signature"""

    MINT = "mint(address,uint256)"
    TRANSFER = "transfer(address,uint256)"
    APPROVE = "approve(address,uint256)"
    WITHDRAW_TO = "withdrawTo(address,uint256)"

    @property
    def selector(self) -> bytes:
        return Web3.keccak(text=self.value)[:4]

    @property
    def call_gas_limit(self) -> int:
        return DEFAULT_GAS_LIMITS[self.name.lower()]


@dataclass(frozen=True)
class Action:
    """One token call executed by the account: `kind(recipient, amount)` on `target`"""

    kind: ActionKind
    target: str
    recipient: str
    amount: int


@dataclass(frozen=True)
class UserOperation:
    """EntryPoint v0.6 UserOperation plus its signing state"""

    sender: str
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b""
    signature: bytes = PLACEHOLDER_SIGNATURE
    signature_state: SignatureState = field(default=SignatureState.UNSIGNED, compare=False)

    def evolve(self, **changes) -> "UserOperation":
        """Copy with changed fields; the copy is unsigned unless a state is given"""
        changes.setdefault("signature_state", SignatureState.UNSIGNED)
        return replace(self, **changes)


def encode_call(selector: bytes, arg_types: Sequence[str], args: Sequence[Any]) -> bytes:
    """ABI-encode a function call as selector + arguments"""
    try:
        return selector + encode(list(arg_types), list(args))
    except (AbiEncodingError, TypeError, ValueError) as e:
        raise EncodingError(f"Failed to encode call 0x{selector.hex()} with {args}: {e}") from e


def _checksum(address: str) -> str:
    try:
        return Web3.to_checksum_address(address)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Invalid address {address!r}: {e}") from e


def make_execute(target: str, value: int, inner_call_data: bytes) -> bytes:
    """Wrap a call so the account performs it through execute(target, value, data)"""
    return encode_call(
        EXECUTE_SELECTOR,
        ["address", "uint256", "bytes"],
        [_checksum(target), value, inner_call_data],
    )


def make_init_code(factory: str, owner: str, salt: int) -> bytes:
    """Factory address followed by createAccount(owner, salt) call data"""
    create_call = encode_call(
        CREATE_ACCOUNT_SELECTOR,
        ["address", "uint256"],
        [_checksum(owner), salt],
    )
    return bytes(HexBytes(_checksum(factory))) + create_call


def make_action_call_data(action: Action) -> bytes:
    inner = encode_call(
        action.kind.selector,
        ["address", "uint256"],
        [_checksum(action.recipient), action.amount],
    )
    return make_execute(action.target, 0, inner)


def create_user_operation(
    action: Action,
    nonce: int,
    owner: str,
    sender: str,
    salt: int,
    max_fee_per_gas: int,
    factory: str,
) -> UserOperation:
    """Create an unsigned UserOperation that runs `action` through the account's executor

    A zero nonce means the account is not deployed yet, so the factory call is
    attached as init code. Verification gas always includes the init-code
    allowance.
    """
    call_data = make_action_call_data(action)
    init_code = make_init_code(factory, owner, salt) if nonce == 0 else b""

    logger.info(f"Created {action.kind.name.lower()} op: {action.amount} to {action.recipient} via {action.target}")

    return UserOperation(
        sender=_checksum(sender),
        nonce=nonce,
        init_code=init_code,
        call_data=call_data,
        call_gas_limit=action.kind.call_gas_limit,
        verification_gas_limit=DEFAULT_GAS_LIMITS["verification"] + DEFAULT_GAS_LIMITS["init_code"],
        pre_verification_gas=DEFAULT_GAS_LIMITS["pre_verification"],
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_fee_per_gas,
        paymaster_and_data=b"",
        signature=PLACEHOLDER_SIGNATURE,
    )


def convert_user_operation_to_rpc_format(user_op: UserOperation) -> Dict[str, str]:
    """Convert a UserOperation to the JSON-RPC field map used by relays and sponsors"""
    return {
        "sender": user_op.sender,
        "nonce": hex(user_op.nonce),
        "initCode": "0x" + user_op.init_code.hex(),
        "callData": "0x" + user_op.call_data.hex(),
        "callGasLimit": hex(user_op.call_gas_limit),
        "verificationGasLimit": hex(user_op.verification_gas_limit),
        "preVerificationGas": hex(user_op.pre_verification_gas),
        "maxFeePerGas": hex(user_op.max_fee_per_gas),
        "maxPriorityFeePerGas": hex(user_op.max_priority_fee_per_gas),
        "paymasterAndData": "0x" + user_op.paymaster_and_data.hex(),
        "signature": "0x" + user_op.signature.hex(),
    }


def _int_from_quantity(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected an integer quantity, got {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        result = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
    else:
        raise ValueError(f"{name}: expected an integer quantity, got {value!r}")
    if result < 0:
        raise ValueError(f"{name}: negative quantity {value!r}")
    return result


def _bytes_from_hex(name: str, value: Any) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise ValueError(f"{name}: expected a hex string, got {value!r}")
    return bytes(HexBytes(value))


def user_operation_from_rpc_format(
    data: Dict[str, Any],
    signature_state: Optional[SignatureState] = None,
) -> UserOperation:
    """Parse a JSON-RPC field map; raises ValueError on missing or malformed fields"""
    if not isinstance(data, dict):
        raise ValueError(f"UserOperation must be an object, got {type(data).__name__}")
    missing = [name for name in RPC_FIELDS if name not in data and name not in ("paymasterAndData", "signature")]
    if missing:
        raise ValueError(f"UserOperation is missing field(s): {', '.join(missing)}")

    sender = data["sender"]
    if not isinstance(sender, str) or not Web3.is_address(sender):
        raise ValueError(f"sender: invalid address {sender!r}")

    signature = data.get("signature")
    return UserOperation(
        sender=Web3.to_checksum_address(sender),
        nonce=_int_from_quantity("nonce", data["nonce"]),
        init_code=_bytes_from_hex("initCode", data["initCode"]),
        call_data=_bytes_from_hex("callData", data["callData"]),
        call_gas_limit=_int_from_quantity("callGasLimit", data["callGasLimit"]),
        verification_gas_limit=_int_from_quantity("verificationGasLimit", data["verificationGasLimit"]),
        pre_verification_gas=_int_from_quantity("preVerificationGas", data["preVerificationGas"]),
        max_fee_per_gas=_int_from_quantity("maxFeePerGas", data["maxFeePerGas"]),
        max_priority_fee_per_gas=_int_from_quantity("maxPriorityFeePerGas", data["maxPriorityFeePerGas"]),
        paymaster_and_data=_bytes_from_hex("paymasterAndData", data.get("paymasterAndData")),
        signature=_bytes_from_hex("signature", signature) if signature is not None else PLACEHOLDER_SIGNATURE,
        signature_state=signature_state or SignatureState.UNSIGNED,
    )
