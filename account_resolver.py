"""
Counterfactual account address resolution via the EntryPoint
"""

import logging
from typing import Tuple

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from entry_point import FailedOp, SenderAddressResult, decode_entry_point_revert
from errors import ResolutionError
from user_operations import make_init_code

logger = logging.getLogger(__name__)


class SenderResolver:
    """Resolves (owner, salt) to (nonce, sender) against the on-chain EntryPoint

    Nothing is cached: both values are queried on every call.
    """

    def __init__(self, entry_point_contract, factory_address: str):
        self.entry_point = entry_point_contract
        self.factory_address = Web3.to_checksum_address(factory_address)

    def get_sender_address(self, owner: str, salt: int) -> str:
        """Simulate getSenderAddress and read the address out of its revert"""
        init_code = make_init_code(self.factory_address, owner, salt)

        try:
            self.entry_point.functions.getSenderAddress(init_code).call()
        except ContractLogicError as e:
            revert = decode_entry_point_revert(e.data) if isinstance(e.data, (str, bytes)) else None
            if isinstance(revert, SenderAddressResult):
                return revert.sender
            if isinstance(revert, FailedOp):
                raise ResolutionError(
                    f"getSenderAddress failed for owner {owner}, salt {salt}: {revert.reason}"
                ) from e
            raise ResolutionError(
                f"getSenderAddress reverted with unexpected data for owner {owner}, salt {salt}: {e.data!r}"
            ) from e
        except (Web3Exception, RequestException) as e:
            raise ResolutionError(f"getSenderAddress call failed for owner {owner}, salt {salt}: {e}") from e

        # the entry point always reverts here
        raise ResolutionError(f"getSenderAddress did not revert for owner {owner}, salt {salt}")

    def get_nonce(self, sender: str) -> int:
        try:
            nonce = self.entry_point.functions.getNonce(Web3.to_checksum_address(sender), 0).call()
        except (Web3Exception, RequestException) as e:
            raise ResolutionError(f"getNonce failed for sender {sender}: {e}") from e
        if not isinstance(nonce, int):
            raise ResolutionError(f"Unexpected getNonce return value for sender {sender}: {nonce!r}")
        return nonce

    def resolve(self, owner: str, salt: int) -> Tuple[int, str]:
        sender = self.get_sender_address(owner, salt)
        nonce = self.get_nonce(sender)
        logger.info(f"Resolved owner {owner} salt {salt} -> sender {sender}, nonce {nonce}")
        return nonce, sender


class FixedSenderResolver:
    """Resolver pinned to a fixed (nonce, sender) pair, for deterministic tests"""

    def __init__(self, nonce: int, sender: str):
        self.nonce = nonce
        self.sender = Web3.to_checksum_address(sender)

    def get_sender_address(self, owner: str, salt: int) -> str:
        return self.sender

    def get_nonce(self, sender: str) -> int:
        return self.nonce

    def resolve(self, owner: str, salt: int) -> Tuple[int, str]:
        return self.nonce, self.sender
