"""
Paymaster (sponsor) integration for gasless UserOperations
"""

import logging
from typing import Optional

from config import DEFAULT_PAYMASTER_TYPE
from errors import ConfigurationError, JsonRpcError, SponsorshipError
from rpc import JsonRpcClient
from signer import OwnerKey, seal_user_operation
from user_operations import (
    SignatureState,
    UserOperation,
    convert_user_operation_to_rpc_format,
    user_operation_from_rpc_format,
)

logger = logging.getLogger(__name__)


class PaymasterClient(JsonRpcClient):
    """Client for a pm_sponsorUserOperation endpoint"""

    def __init__(
        self,
        url: str,
        entry_point_address: str,
        chain_id: int,
        key: Optional[OwnerKey],
        paymaster_type: str = DEFAULT_PAYMASTER_TYPE,
        timeout: int = 30,
    ):
        super().__init__(url, timeout=timeout)
        self.entry_point_address = entry_point_address
        self.chain_id = chain_id
        self.key = key
        self.paymaster_type = paymaster_type

    def sponsor_user_operation(self, user_op: UserOperation) -> UserOperation:
        """Return a copy of `user_op` carrying the sponsor's gas-payment fields

        The sponsor only accepts well-formed signatures, so the request carries
        a throwaway seal made with the relay key. The returned operation has the
        caller's original signature back and is unsigned: the sponsor's fields
        change the operation hash, so it must be sealed again before dispatch.
        """
        if not self.url:
            raise ConfigurationError("Paymaster URL is not configured")
        if self.key is None:
            raise ConfigurationError("Relay signing key is required for sponsorship")

        probe = seal_user_operation(
            user_op,
            self.entry_point_address,
            self.chain_id,
            self.key,
            state=SignatureState.SPONSOR_PROBE_SEALED,
        )
        op_map = convert_user_operation_to_rpc_format(probe)

        logger.info(f"Requesting sponsorship for sender {user_op.sender}, nonce {user_op.nonce}")
        try:
            response = self._make_rpc_request(
                "pm_sponsorUserOperation",
                [op_map, self.entry_point_address, {"type": self.paymaster_type}],
            )
        except JsonRpcError as e:
            raise SponsorshipError(f"Sponsorship failed for sender {user_op.sender}: {e}") from e

        if not isinstance(response, dict):
            raise SponsorshipError(f"Sponsor returned an invalid payload for sender {user_op.sender}: {response!r}")

        merged = {**op_map, **response}
        try:
            sponsored = user_operation_from_rpc_format(merged)
        except ValueError as e:
            raise SponsorshipError(f"Sponsor returned unusable fields for sender {user_op.sender}: {e}") from e

        logger.info(f"Sponsor filled fields {sorted(response)} for sender {user_op.sender}")
        return sponsored.evolve(signature=user_op.signature)
