import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiohttp
from eth_abi import encode as abi_encode
from eth_account import Account
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.types import TxParams

from core.domain.entities import EscrowStatus, normalize_email, utcnow
from core.domain.exceptions import OnchainFailure, ValidationError
from core.domain.value_objects import (UINT40_MAX, EscrowCreateReceipt, EscrowTxReceipt, OnchainTransferState,
                                       parse_status_code, to_atomic_amount)
from core.interfaces.services import IEscrowDriver

T = TypeVar("T")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = b"\x00" * 32

CHAIN_IDS = {
    "celo": 42220,
    "celo-sepolia": 11142220,
}

DEFAULT_RPC_URLS = {
    "celo": "https://forno.celo.org",
    "celo-sepolia": "https://forno.celo-sepolia.celo-testnet.org",
}

_TRANSFER_REQUEST = {
    "name": "request", "type": "tuple", "internalType": "struct SharedEscrow.TransferRequest",
    "components": [
        {"name": "transferId", "type": "bytes32"},
        {"name": "token", "type": "address"},
        {"name": "fundingWallet", "type": "address"},
        {"name": "amount", "type": "uint96"},
        {"name": "recipientHash", "type": "bytes32"},
        {"name": "expiry", "type": "uint40"},
    ],
}

_PERMIT = {
    "name": "permit", "type": "tuple", "internalType": "struct SharedEscrow.PermitData",
    "components": [
        {"name": "enabled", "type": "bool"},
        {"name": "value", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
        {"name": "v", "type": "uint8"},
        {"name": "r", "type": "bytes32"},
        {"name": "s", "type": "bytes32"},
    ],
}

SHARED_ESCROW_ABI = [
    {
        "type": "function", "name": "createTransfer", "stateMutability": "nonpayable",
        "inputs": [_TRANSFER_REQUEST, _PERMIT],
        "outputs": [],
    },
    {
        "type": "function", "name": "claimTransfer", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "transferId", "type": "bytes32"},
            {"name": "recipient", "type": "address"},
            {"name": "recipientHash", "type": "bytes32"},
        ],
        "outputs": [],
    },
    {
        "type": "function", "name": "refundTransfer", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "transferId", "type": "bytes32"},
            {"name": "refundAddress", "type": "address"},
        ],
        "outputs": [],
    },
    {
        "type": "function", "name": "getTransfer", "stateMutability": "view",
        "inputs": [{"name": "transferId", "type": "bytes32"}],
        "outputs": [
            {
                "name": "", "type": "tuple", "internalType": "struct SharedEscrow.Transfer",
                "components": [
                    {"name": "sender", "type": "address"},
                    {"name": "token", "type": "address"},
                    {"name": "amount", "type": "uint96"},
                    {"name": "recipientHash", "type": "bytes32"},
                    {"name": "expiry", "type": "uint40"},
                    {"name": "status", "type": "uint8"},
                ],
            }
        ],
    },
]


def compute_salt(version: str) -> bytes:
    return bytes(Web3.keccak(text=version))


def compute_recipient_hash(salt: bytes, email: str) -> str:
    return Web3.to_hex(Web3.keccak(abi_encode(["bytes32", "string"], [salt, normalize_email(email)])))


def compute_transfer_id(salt: bytes, recipient_hash: str, amount: int, expiry: int) -> str:
    return Web3.to_hex(Web3.keccak(abi_encode(
        ["bytes32", "bytes32", "uint96", "uint40"],
        [salt, Web3.to_bytes(hexstr=recipient_hash), amount, expiry],
    )))


class Web3EscrowDriver(IEscrowDriver):
    """
    Talks to the SharedEscrow contract through web3.py.

    State-changing calls are signed by the operator key and wait for a mined
    receipt. When `fee_currency` is set the transaction carries Celo's
    `feeCurrency` field and is handed to the node for signing, since
    eth-account cannot sign that transaction type.
    """

    def __init__(self,
                 contract_address: str,
                 treasury_wallet: str,
                 token_address: str,
                 operator_key: Optional[str] = None,
                 network: str = "celo-sepolia",
                 rpc_url: Optional[str] = None,
                 fee_currency: Optional[str] = None,
                 salt_version: str = "MS_ESCROW_V1",
                 timeout: float = 180.0,
                 receipt_timeout: float = 120.0,
                 clock: Callable[[], datetime] = utcnow,
                 w3: Optional[AsyncWeb3] = None):
        if network not in CHAIN_IDS:
            raise ValueError(f"Unknown escrow network: {network}")
        self.network = network
        self.chain_id = CHAIN_IDS[network]
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url or DEFAULT_RPC_URLS[network]))
        self.contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=SHARED_ESCROW_ABI,
        )
        self.treasury_wallet = AsyncWeb3.to_checksum_address(treasury_wallet)
        self.token_address = AsyncWeb3.to_checksum_address(token_address)
        self.account = Account.from_key(operator_key) if operator_key else None
        self.fee_currency = AsyncWeb3.to_checksum_address(fee_currency) if fee_currency else None
        self.salt = compute_salt(salt_version)
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.clock = clock

    def compute_recipient_hash(self, email: str) -> str:
        return compute_recipient_hash(self.salt, email)

    async def create_transfer(self, recipient_hash: str, amount: str, decimals: int, token_address: str,
                              chain: str, expiry: int) -> EscrowCreateReceipt:
        if chain != self.network:
            raise ValidationError(f"Chain {chain} is not served by the {self.network} escrow contract")
        try:
            atomic = to_atomic_amount(amount, decimals)
        except ValueError as e:
            raise ValidationError(str(e))
        if expiry <= 0 or expiry > UINT40_MAX:
            raise ValidationError("Expiry exceeds uint40 range")

        transfer_id = compute_transfer_id(self.salt, recipient_hash, atomic, expiry)
        token = AsyncWeb3.to_checksum_address(token_address) if token_address else self.token_address
        request = (
            Web3.to_bytes(hexstr=transfer_id),
            token,
            self.treasury_wallet,
            atomic,
            Web3.to_bytes(hexstr=recipient_hash),
            expiry,
        )
        permit = (False, 0, 0, 0, ZERO_HASH, ZERO_HASH)

        tx_hash = await self._guard(
            f"createTransfer {transfer_id}",
            self._build_and_send(self.contract.functions.createTransfer(request, permit)),
        )
        logger.info(f"Escrow transfer {transfer_id} created on {chain}, tx {tx_hash}")
        return EscrowCreateReceipt(escrow_transfer_id=transfer_id, tx_hash=tx_hash,
                                   recipient_hash=recipient_hash, expiry=expiry)

    async def claim_transfer(self, escrow_transfer_id: str, recipient_wallet: str,
                             recipient_email: str) -> EscrowTxReceipt:
        contract_fn = self.contract.functions.claimTransfer(
            Web3.to_bytes(hexstr=escrow_transfer_id),
            AsyncWeb3.to_checksum_address(recipient_wallet),
            Web3.to_bytes(hexstr=self.compute_recipient_hash(recipient_email)),
        )
        tx_hash = await self._guard(f"claimTransfer {escrow_transfer_id}", self._build_and_send(contract_fn))
        return EscrowTxReceipt(escrow_transfer_id=escrow_transfer_id, tx_hash=tx_hash)

    async def refund_transfer(self, escrow_transfer_id: str, sender_wallet: str) -> EscrowTxReceipt:
        contract_fn = self.contract.functions.refundTransfer(
            Web3.to_bytes(hexstr=escrow_transfer_id),
            AsyncWeb3.to_checksum_address(sender_wallet),
        )
        tx_hash = await self._guard(f"refundTransfer {escrow_transfer_id}", self._build_and_send(contract_fn))
        return EscrowTxReceipt(escrow_transfer_id=escrow_transfer_id, tx_hash=tx_hash)

    async def load_transfer(self, escrow_transfer_id: str) -> Optional[OnchainTransferState]:
        result = await self._guard(
            f"getTransfer {escrow_transfer_id}",
            self.contract.functions.getTransfer(Web3.to_bytes(hexstr=escrow_transfer_id)).call(),
        )
        sender, token, amount, recipient_hash, expiry, status = result
        if sender == ZERO_ADDRESS and amount == 0:
            return None
        return OnchainTransferState(
            sender=sender,
            token=token,
            amount=int(amount),
            recipient_hash=Web3.to_hex(recipient_hash),
            expiry=int(expiry),
            status_code=int(status),
        )

    async def get_status(self, escrow_transfer_id: str) -> Optional[EscrowStatus]:
        state = await self.load_transfer(escrow_transfer_id)
        if state is None:
            return None
        return parse_status_code(state.status_code, state.expiry, int(self.clock().timestamp()))

    async def is_cancellable(self, escrow_transfer_id: str) -> bool:
        status = await self.get_status(escrow_transfer_id)
        return status in (EscrowStatus.PENDING, EscrowStatus.EXPIRED)

    async def _guard(self, description: str, coro: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except OnchainFailure:
            raise
        except asyncio.TimeoutError:
            raise OnchainFailure(f"Timeout during {description}")
        except (Web3Exception, aiohttp.ClientError, OSError) as e:
            raise OnchainFailure(f"{description} failed: {e}")

    async def _build_and_send(self, contract_fn: Any) -> str:
        if self.account is None:
            raise OnchainFailure("Escrow operator key is not configured")

        nonce = await self.w3.eth.get_transaction_count(self.account.address)
        latest_block = await self.w3.eth.get_block("latest")
        base_fee = latest_block.get("baseFeePerGas", 0)
        max_priority_fee = await self.w3.eth.max_priority_fee
        tx_params: TxParams = {
            "from": self.account.address,
            "nonce": nonce,
            "chainId": self.chain_id,
            "maxFeePerGas": base_fee * 2 + max_priority_fee,
            "maxPriorityFeePerGas": max_priority_fee,
        }
        if self.fee_currency:
            tx_params["feeCurrency"] = self.fee_currency

        try:
            gas_estimate = await contract_fn.estimate_gas(tx_params)
            tx_params["gas"] = int(gas_estimate * 1.2)
        except Web3Exception as e:
            # a revert here would revert on-chain as well
            raise OnchainFailure(f"Gas estimation failed: {e}")

        built_tx: Dict[str, Any] = await contract_fn.build_transaction(tx_params)
        if self.fee_currency:
            tx_hash = await self.w3.eth.send_transaction(built_tx)
        else:
            signed = self.account.sign_transaction(built_tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = Web3.to_hex(tx_hash)

        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] == 0:
            raise OnchainFailure(f"Transaction reverted: {hex_hash}")
        logger.info(f"Escrow tx {hex_hash} confirmed in block {receipt['blockNumber']}")
        return hex_hash
