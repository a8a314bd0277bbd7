from unittest.mock import MagicMock

import pytest
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractCustomError, Web3Exception

from config import ENTRYPOINT_V06
from dispatcher import UserOperationDispatcher
from entry_point import (
    ENTRY_POINT_ABI,
    EXECUTION_RESULT_SELECTOR,
    FAILED_OP_SELECTOR,
    ExecutionResult,
    FailedOp,
    get_user_op_hash,
)
from errors import JsonRpcError, SignatureError, SubmissionError
from signer import seal_user_operation

from conftest import CHAIN_ID, RevertingProvider, revert_data

TX_HASH = HexBytes(b"\x01" * 32)


@pytest.fixture
def sealed_op(user_op, owner_key):
    return seal_user_operation(user_op, ENTRYPOINT_V06, CHAIN_ID, owner_key)


@pytest.fixture
def op_hash(sealed_op):
    return Web3.to_hex(get_user_op_hash(sealed_op, ENTRYPOINT_V06, CHAIN_ID))


@pytest.fixture
def web3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.send_raw_transaction.return_value = TX_HASH
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    return w3


@pytest.fixture
def entry_point(relay_key):
    contract = MagicMock()
    contract.functions.handleOps.return_value.build_transaction.return_value = {
        "to": ENTRYPOINT_V06,
        "data": "0x1fad948c",
        "value": 0,
        "gas": 500_000,
        "gasPrice": 2_000_000_000,
        "nonce": 7,
        "chainId": CHAIN_ID,
    }
    return contract


@pytest.fixture
def bundler():
    return MagicMock()


def make_dispatcher(web3, entry_point, bundler, key=None, **kwargs):
    return UserOperationDispatcher(web3, entry_point, ENTRYPOINT_V06, CHAIN_ID, bundler, key=key, **kwargs)


def test_unsealed_operation_is_refused(web3, entry_point, bundler, user_op):
    dispatcher = make_dispatcher(web3, entry_point, bundler)

    with pytest.raises(SignatureError, match="sealed"):
        dispatcher.dispatch(user_op)
    bundler.send_user_operation.assert_not_called()


def test_mutated_sealed_operation_is_refused(web3, entry_point, bundler, sealed_op):
    dispatcher = make_dispatcher(web3, entry_point, bundler)

    with pytest.raises(SignatureError):
        dispatcher.dispatch(sealed_op.evolve(call_gas_limit=1))


def test_relay_mode_returns_bundler_hash(web3, entry_point, bundler, sealed_op, op_hash):
    bundler.send_user_operation.return_value = op_hash
    dispatcher = make_dispatcher(web3, entry_point, bundler)

    result = dispatcher.dispatch(sealed_op)

    assert result.user_operation_hash == op_hash
    assert result.transaction_hash is None
    bundler.send_user_operation.assert_called_once_with(sealed_op)
    entry_point.functions.handleOps.assert_not_called()


def test_relay_failure_keeps_op_hash(web3, entry_point, bundler, sealed_op, op_hash):
    bundler.send_user_operation.side_effect = JsonRpcError("eth_sendUserOperation error: AA21 didn't pay prefund")
    dispatcher = make_dispatcher(web3, entry_point, bundler)

    with pytest.raises(SubmissionError, match="AA21") as excinfo:
        dispatcher.dispatch(sealed_op)
    assert excinfo.value.user_operation_hash == op_hash


def test_direct_mode_sends_handle_ops(web3, entry_point, bundler, sealed_op, op_hash, relay_key):
    dispatcher = make_dispatcher(web3, entry_point, bundler, key=relay_key, send_direct=True)

    result = dispatcher.dispatch(sealed_op)

    assert result.user_operation_hash == op_hash
    assert result.transaction_hash == "0x" + "01" * 32
    (ops, beneficiary), _ = entry_point.functions.handleOps.call_args
    assert len(ops) == 1
    assert ops[0][-1] == sealed_op.signature
    assert beneficiary == relay_key.address
    tx_params = entry_point.functions.handleOps.return_value.build_transaction.call_args.args[0]
    assert tx_params["from"] == relay_key.address
    assert tx_params["nonce"] == 7
    web3.eth.send_raw_transaction.assert_called_once()
    web3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=120)
    bundler.send_user_operation.assert_not_called()


def test_direct_mode_reverted_receipt(web3, entry_point, bundler, sealed_op, op_hash, relay_key):
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
    dispatcher = make_dispatcher(web3, entry_point, bundler, key=relay_key, send_direct=True)

    with pytest.raises(SubmissionError, match="reverted") as excinfo:
        dispatcher.dispatch(sealed_op)
    assert excinfo.value.user_operation_hash == op_hash


def test_direct_mode_broadcast_failure(web3, entry_point, bundler, sealed_op, op_hash, relay_key):
    web3.eth.send_raw_transaction.side_effect = Web3Exception("nonce too low")
    dispatcher = make_dispatcher(web3, entry_point, bundler, key=relay_key, send_direct=True)

    with pytest.raises(SubmissionError, match="nonce too low") as excinfo:
        dispatcher.dispatch(sealed_op)
    assert excinfo.value.user_operation_hash == op_hash
    assert web3.eth.send_raw_transaction.call_count == 1


def test_direct_mode_requires_key(web3, entry_point, bundler, sealed_op):
    dispatcher = make_dispatcher(web3, entry_point, bundler, send_direct=True)

    with pytest.raises(SubmissionError, match="signing key"):
        dispatcher.dispatch(sealed_op)


def failed_op_revert():
    data = revert_data(FAILED_OP_SELECTOR, ["uint256", "string"], [0, "AA23 reverted (or OOG)"])
    return ContractCustomError(data, data=data)


def test_failed_simulation_is_reported_but_not_fatal(web3, entry_point, bundler, sealed_op, op_hash):
    entry_point.functions.simulateHandleOp.return_value.call.side_effect = failed_op_revert()
    bundler.send_user_operation.return_value = op_hash
    dispatcher = make_dispatcher(web3, entry_point, bundler, simulate=True)

    result = dispatcher.dispatch(sealed_op)

    assert result.simulation == FailedOp(op_index=0, reason="AA23 reverted (or OOG)")
    bundler.send_user_operation.assert_called_once()


def test_failed_simulation_can_be_fatal(web3, entry_point, bundler, sealed_op, op_hash):
    entry_point.functions.simulateHandleOp.return_value.call.side_effect = failed_op_revert()
    dispatcher = make_dispatcher(web3, entry_point, bundler, simulate=True, simulation_fatal=True)

    with pytest.raises(SubmissionError, match="AA23") as excinfo:
        dispatcher.dispatch(sealed_op)
    assert excinfo.value.user_operation_hash == op_hash
    bundler.send_user_operation.assert_not_called()


def test_passing_simulation_with_fatal_policy(web3, entry_point, bundler, sealed_op, op_hash):
    data = revert_data(
        EXECUTION_RESULT_SELECTOR,
        ["uint256", "uint256", "uint48", "uint48", "bool", "bytes"],
        [60_000, 123, 0, 0, True, b""],
    )
    entry_point.functions.simulateHandleOp.return_value.call.side_effect = ContractCustomError(data, data=data)
    bundler.send_user_operation.return_value = op_hash
    dispatcher = make_dispatcher(web3, entry_point, bundler, simulate=True, simulation_fatal=True)

    result = dispatcher.dispatch(sealed_op)

    assert isinstance(result.simulation, ExecutionResult)
    assert result.user_operation_hash == op_hash


def test_simulation_that_does_not_revert_is_an_anomaly(web3, entry_point, bundler, sealed_op):
    entry_point.functions.simulateHandleOp.return_value.call.return_value = []
    dispatcher = make_dispatcher(web3, entry_point, bundler, simulate=True, simulation_fatal=True)

    with pytest.raises(SubmissionError):
        dispatcher.dispatch(sealed_op)


def test_simulation_is_skipped_by_default(web3, entry_point, bundler, sealed_op, op_hash):
    bundler.send_user_operation.return_value = op_hash
    dispatcher = make_dispatcher(web3, entry_point, bundler)

    dispatcher.dispatch(sealed_op)

    entry_point.functions.simulateHandleOp.assert_not_called()


def test_simulation_decodes_node_revert(sealed_op):
    w3 = Web3(RevertingProvider(
        revert_data(FAILED_OP_SELECTOR, ["uint256", "string"], [0, "AA21 didn't pay prefund"])
    ))
    contract = w3.eth.contract(address=ENTRYPOINT_V06, abi=ENTRY_POINT_ABI)
    dispatcher = UserOperationDispatcher(w3, contract, ENTRYPOINT_V06, CHAIN_ID, MagicMock())

    outcome = dispatcher.simulate_user_operation(sealed_op)

    assert outcome == FailedOp(op_index=0, reason="AA21 didn't pay prefund")
    method, params = w3.provider.requests[-1]
    assert method == "eth_call"
    # simulateHandleOp(UserOperation,address,bytes)
    assert HexBytes(params[0]["data"])[:4] == bytes.fromhex("d6383f94")
