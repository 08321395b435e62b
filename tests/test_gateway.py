"""Tests for the web3 ledger gateway, with the contract and node mocked out."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError

from noise_services.errors import LedgerUnreachable, NotAuthenticated, RecordNotFound, Rejected
from noise_services.ledger.gateway import LedgerGateway, PendingTransaction, revert_reason
from noise_services.ledger.identity import WalletIdentity
from noise_services.reporting.orchestrator import ReportLifecycle

CONTRACT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
CREATOR = "0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A"
HANDLE_BYTES = bytes.fromhex("ab" * 32)
TX_HASH = bytes.fromhex("cd" * 32)


def function_returning(value=None, side_effect=None):
    """A contract function factory whose .call() resolves to `value`."""
    bound = MagicMock()
    bound.call = AsyncMock(return_value=value, side_effect=side_effect)
    bound.build_transaction = AsyncMock(return_value={
        "to": CONTRACT,
        "value": 0,
        "gas": 3_000_000,
        "gasPrice": 1_000_000_000,
        "nonce": 7,
        "chainId": 11155111,
        "data": "0x",
    })
    factory = MagicMock(return_value=bound)
    return factory, bound


def make_gateway(identity=None, **functions):
    contract = MagicMock()
    contract.address = CONTRACT
    for name, factory in functions.items():
        setattr(contract.functions, name, factory)

    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 12})

    async def gas_price():
        return 1_000_000_000

    type(w3.eth).gas_price = property(lambda self: gas_price())
    return LedgerGateway(w3, contract, identity=identity), w3


def business_data(creator=CREATOR, verified=False, decrypted=0):
    return ["Community park", 3, 0, "Drilling", creator, 1_760_000_000, verified, decrypted]


@pytest.mark.asyncio
async def test_get_record_decodes_contract_tuple():
    data_fn, _ = function_returning(business_data(verified=True, decrypted=64))
    handle_fn, _ = function_returning(HANDLE_BYTES)
    gateway, _ = make_gateway(getBusinessData=data_fn, getEncryptedValue=handle_fn)

    record = await gateway.get_record("noise-1")

    assert record.id == "noise-1"
    assert record.label == "Community park"
    assert record.public_aux1 == 3
    assert record.submitter == CREATOR
    assert record.verified
    assert record.revealed_value == 64
    assert record.encrypted_value_handle == "0x" + "ab" * 32
    data_fn.assert_called_once_with("noise-1")


@pytest.mark.asyncio
async def test_empty_entry_is_not_found():
    data_fn, _ = function_returning(business_data(creator="0x0000000000000000000000000000000000000000"))
    handle_fn, _ = function_returning(HANDLE_BYTES)
    gateway, _ = make_gateway(getBusinessData=data_fn, getEncryptedValue=handle_fn)

    with pytest.raises(RecordNotFound):
        await gateway.get_record("noise-x")


@pytest.mark.asyncio
async def test_reverting_read_is_not_found():
    handle_fn, _ = function_returning(side_effect=ContractLogicError("execution reverted: Business data does not exist"))
    gateway, _ = make_gateway(getEncryptedValue=handle_fn)

    with pytest.raises(RecordNotFound):
        await gateway.get_encrypted_handle("noise-x")


@pytest.mark.asyncio
async def test_transport_failure_is_unreachable():
    ids_fn, _ = function_returning(side_effect=aiohttp.ClientConnectionError("refused"))
    gateway, _ = make_gateway(getAllBusinessIds=ids_fn)

    with pytest.raises(LedgerUnreachable):
        await gateway.list_record_ids()


@pytest.mark.asyncio
async def test_availability():
    available_fn, _ = function_returning(True)
    gateway, _ = make_gateway(isAvailable=available_fn)

    assert await gateway.check_availability() is True


@pytest.mark.asyncio
async def test_write_requires_identity():
    create_fn, _ = function_returning()
    gateway, _ = make_gateway(createBusinessData=create_fn)

    with pytest.raises(NotAuthenticated):
        await gateway.create_record("noise-1", "Park", "0x" + "ab" * 32, "0x01", 0, 0, "")


@pytest.mark.asyncio
async def test_create_record_simulates_signs_and_broadcasts(identity):
    create_fn, bound = function_returning()
    gateway, w3 = make_gateway(identity=identity, createBusinessData=create_fn)

    pending = await gateway.create_record("noise-1", "Park", "0x" + "ab" * 32, "0x0102", 4, 0, "loud")
    receipt = await pending.wait()

    create_fn.assert_called_once_with("noise-1", "Park", HANDLE_BYTES, b"\x01\x02", 4, 0, "loud")
    bound.call.assert_awaited_once_with({"from": identity.address})
    w3.eth.send_raw_transaction.assert_awaited_once()
    assert pending.hash_hex == "0x" + "cd" * 32
    assert receipt["status"] == 1


@pytest.mark.asyncio
async def test_preflight_revert_is_rejected_with_reason(identity):
    verify_fn, _ = function_returning(side_effect=ContractLogicError("execution reverted: Data already verified"))
    gateway, w3 = make_gateway(identity=identity, verifyDecryption=verify_fn)

    with pytest.raises(Rejected) as exc_info:
        await gateway.submit_decryption_proof("noise-1", "0x40", "0x99")

    assert exc_info.value.reason == "Data already verified"
    w3.eth.send_raw_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_reverted_receipt_replays_for_reason(identity):
    verify_fn, bound = function_returning()
    gateway, w3 = make_gateway(identity=identity, verifyDecryption=verify_fn)
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0, "blockNumber": 20})

    pending = await gateway.submit_decryption_proof("noise-1", "0x40", "0x99")
    bound.call.side_effect = ContractLogicError("execution reverted: Data already verified")

    with pytest.raises(Rejected) as exc_info:
        await pending.wait()

    assert exc_info.value.reason == "Data already verified"
    assert bound.call.await_args.kwargs == {"block_identifier": 20}


@pytest.mark.asyncio
async def test_confirmation_timeout_is_unreachable():
    w3 = MagicMock()
    w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("slow"))

    with pytest.raises(LedgerUnreachable):
        await PendingTransaction(w3, TX_HASH, timeout=1).wait()


def test_revert_reason_strips_prefix():
    assert revert_reason(ContractLogicError("execution reverted: Invalid input proof")) == "Invalid input proof"


def test_disconnected_identity():
    identity = WalletIdentity()

    assert not identity.connected
    assert identity.address is None


def test_mnemonic_identity_is_deterministic():
    phrase = "hour armed goddess false smoke oak physical clean near place concert will"

    assert WalletIdentity.from_mnemonic(phrase).address == WalletIdentity.from_mnemonic(phrase).address


@pytest.mark.asyncio
async def test_empty_entry_skips_handle_read():
    data_fn, _ = function_returning(business_data(creator="0x0000000000000000000000000000000000000000"))
    handle_fn, _ = function_returning(HANDLE_BYTES)
    gateway, _ = make_gateway(getBusinessData=data_fn, getEncryptedValue=handle_fn)

    with pytest.raises(RecordNotFound):
        await gateway.get_record("noise-x")
    handle_fn.assert_not_called()


@pytest.mark.asyncio
async def test_failed_data_read_does_not_leave_handle_read_running():
    data_fn, _ = function_returning(side_effect=aiohttp.ClientConnectionError("refused"))
    handle_fn, _ = function_returning(HANDLE_BYTES)
    gateway, _ = make_gateway(getBusinessData=data_fn, getEncryptedValue=handle_fn)

    with pytest.raises(LedgerUnreachable):
        await gateway.get_record("noise-1")
    handle_fn.assert_not_called()


@pytest.mark.asyncio
async def test_node_rpc_error_on_read_is_unreachable():
    ids_fn, _ = function_returning(side_effect=Web3RPCError("rate limited"))
    data_fn, _ = function_returning(side_effect=Web3RPCError("header not found"))
    available_fn, _ = function_returning(side_effect=Web3RPCError("rate limited"))
    gateway, _ = make_gateway(getAllBusinessIds=ids_fn, getBusinessData=data_fn, isAvailable=available_fn)

    with pytest.raises(LedgerUnreachable):
        await gateway.list_record_ids()
    with pytest.raises(LedgerUnreachable):
        await gateway.get_record("noise-1")
    with pytest.raises(LedgerUnreachable):
        await gateway.check_availability()


@pytest.mark.asyncio
async def test_node_rpc_error_while_waiting_is_unreachable():
    w3 = MagicMock()
    w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=Web3RPCError("overloaded"))

    with pytest.raises(LedgerUnreachable):
        await PendingTransaction(w3, TX_HASH, timeout=1).wait()


def nonce_tracking(bound):
    """Make build_transaction echo the requested nonce and record it."""
    nonces = []

    async def build(params):
        nonces.append(params["nonce"])
        return {
            "to": CONTRACT,
            "value": 0,
            "gas": params["gas"],
            "gasPrice": params["gasPrice"],
            "nonce": params["nonce"],
            "chainId": 11155111,
            "data": "0x",
        }

    bound.build_transaction = AsyncMock(side_effect=build)
    return nonces


@pytest.mark.asyncio
async def test_concurrent_writes_get_distinct_nonces(identity):
    verify_fn, bound = function_returning()
    gateway, w3 = make_gateway(identity=identity, verifyDecryption=verify_fn)
    nonces = nonce_tracking(bound)
    sent = []

    async def transaction_count(address, block):
        await asyncio.sleep(0)
        return len(sent)

    async def send_raw(raw):
        await asyncio.sleep(0)
        sent.append(raw)
        return TX_HASH

    w3.eth.get_transaction_count = AsyncMock(side_effect=transaction_count)
    w3.eth.send_raw_transaction = AsyncMock(side_effect=send_raw)

    await asyncio.gather(
        gateway.submit_decryption_proof("noise-1", "0x40", "0x99"),
        gateway.submit_decryption_proof("noise-1", "0x40", "0x98"),
    )

    assert sorted(nonces) == [0, 1]
    assert len(sent) == 2


@pytest.mark.asyncio
async def test_nonce_advances_past_lagging_node_count(identity):
    create_fn, bound = function_returning()
    gateway, w3 = make_gateway(identity=identity, createBusinessData=create_fn)
    nonces = nonce_tracking(bound)
    w3.eth.get_transaction_count = AsyncMock(return_value=5)

    await gateway.create_record("noise-1", "Park", "0x" + "ab" * 32, "0x01", 0, 0, "")
    await gateway.create_record("noise-2", "Park", "0x" + "ab" * 32, "0x01", 0, 0, "")

    assert nonces == [5, 6]


@pytest.mark.asyncio
async def test_refresh_turns_node_rpc_error_into_error_status(identity, relayer, notifier):
    ids_fn, _ = function_returning(side_effect=Web3RPCError("rate limited"))
    gateway, _ = make_gateway(identity=identity, getAllBusinessIds=ids_fn)
    lifecycle = ReportLifecycle(identity, gateway, relayer, notifier=notifier)

    op = await lifecycle.refresh()

    assert op.outcome == "error"
    assert op.error_kind == "LedgerUnreachable"
    assert op.error.startswith("Failed to load data")
