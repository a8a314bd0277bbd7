"""
ECDSA owner key and UserOperation sealing / signer recovery
"""

import logging
from typing import Tuple

from eth_account import Account
from eth_account.messages import defunct_hash_message
from eth_keys import keys
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError
from hexbytes import HexBytes

from entry_point import get_user_op_hash
from errors import ConfigurationError, SignatureError
from user_operations import SignatureState, UserOperation

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65
V_OFFSET = 27


class OwnerKey:
    """Process-wide ECDSA key; identity is its address. Never log the secret."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(HexBytes(private_key))
        except (TypeError, ValueError, ValidationError) as e:
            raise ConfigurationError(f"Invalid relay private key: {e}") from e

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def account(self):
        return self._account

    def sign_hash(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest; the recovery id is returned as 27/28"""
        signed = self._account.unsafe_sign_hash(digest)
        v = signed.v if signed.v >= V_OFFSET else signed.v + V_OFFSET
        return signed.r.to_bytes(32, "big") + signed.s.to_bytes(32, "big") + bytes([v])

    def __repr__(self) -> str:
        return f"OwnerKey({self.address})"


def _eth_signed_hash(user_op: UserOperation, entry_point: str, chain_id: int) -> Tuple[bytes, bytes]:
    op_hash = get_user_op_hash(user_op, entry_point, chain_id)
    return op_hash, bytes(defunct_hash_message(primitive=op_hash))


def seal_user_operation(
    user_op: UserOperation,
    entry_point: str,
    chain_id: int,
    key: OwnerKey,
    state: SignatureState = SignatureState.FINAL_SEALED,
) -> UserOperation:
    """Sign the EIP-191 prefixed UserOperation hash and store the 65-byte signature"""
    _, eth_hash = _eth_signed_hash(user_op, entry_point, chain_id)
    signature = key.sign_hash(eth_hash)
    return user_op.evolve(signature=signature, signature_state=state)


def recover_user_operation_signer(user_op: UserOperation, entry_point: str, chain_id: int) -> Tuple[bytes, str]:
    """Return (op hash, signer address) for a sealed UserOperation"""
    op_hash, eth_hash = _eth_signed_hash(user_op, entry_point, chain_id)

    signature = bytearray(user_op.signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise SignatureError(f"Invalid signature size in user op: {len(signature)}, op hash 0x{op_hash.hex()}")
    if signature[64] >= V_OFFSET:
        signature[64] -= V_OFFSET
    if signature[64] not in (0, 1):
        raise SignatureError(f"Invalid recovery id {user_op.signature[64]} in user op, op hash 0x{op_hash.hex()}")

    try:
        public_key = keys.Signature(signature_bytes=bytes(signature)).recover_public_key_from_msg_hash(eth_hash)
    except (BadSignature, ValidationError) as e:
        raise SignatureError(f"ecrecover failure for op hash 0x{op_hash.hex()}: {e}") from e

    return op_hash, public_key.to_checksum_address()
