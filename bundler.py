"""
Bundler (relay service) integration for sealed UserOperations
"""

import logging

from errors import ConfigurationError
from rpc import JsonRpcClient
from user_operations import UserOperation, convert_user_operation_to_rpc_format

logger = logging.getLogger(__name__)


class BundlerClient(JsonRpcClient):
    """Client for an ERC-4337 bundler's eth_sendUserOperation"""

    def __init__(self, url: str, entry_point_address: str, timeout: int = 30):
        super().__init__(url, timeout=timeout)
        self.entry_point_address = entry_point_address

    def send_user_operation(self, user_op: UserOperation) -> str:
        """Send a sealed UserOperation and return the hash the bundler reports"""
        if not self.url:
            raise ConfigurationError("Bundler URL is not configured")

        user_op_dict = convert_user_operation_to_rpc_format(user_op)
        logger.info(f"Full UserOp to bundler: {user_op_dict}")
        result = self._make_rpc_request("eth_sendUserOperation", [user_op_dict, self.entry_point_address])

        logger.info(f"UserOperation sent successfully: {result}")
        return str(result)
