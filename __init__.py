"""
Gasless UserOperation Relay

Builds, sponsors, seals and submits ERC-4337 (EntryPoint v0.6) UserOperations
for counterfactual smart accounts owned by an off-chain ECDSA key.
"""

# Main service
from smart_account import RelayService, create_relay_service

# Configuration
from config import RelayConfig

# Individual components for advanced usage
from account_resolver import FixedSenderResolver, SenderResolver
from bundler import BundlerClient
from dispatcher import DispatchResult, UserOperationDispatcher
from entry_point import decode_entry_point_revert, get_user_op_hash
from paymaster import PaymasterClient
from signer import OwnerKey, recover_user_operation_signer, seal_user_operation
from user_operations import Action, ActionKind, SignatureState, UserOperation, create_user_operation

__version__ = "1.0.0"

__all__ = [
    "RelayService",
    "create_relay_service",
    "RelayConfig",
    "SenderResolver",
    "FixedSenderResolver",
    "BundlerClient",
    "PaymasterClient",
    "UserOperationDispatcher",
    "DispatchResult",
    "OwnerKey",
    "seal_user_operation",
    "recover_user_operation_signer",
    "get_user_op_hash",
    "decode_entry_point_revert",
    "Action",
    "ActionKind",
    "SignatureState",
    "UserOperation",
    "create_user_operation",
]
