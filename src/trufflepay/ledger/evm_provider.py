"""
EVM settlement ledger backed by the PaymentRegistry contract.

Invoices live in ``invoices(bytes32)``; payment pulls an ERC-20 allowance
from the payer into the registry and the seller withdraws per invoice.
"""

import asyncio

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .encoding import encode_invoice_id
from .interfaces import LedgerConnectionError, LedgerInvoice, LedgerRevert, TxReceipt

logger = structlog.get_logger(__name__)

REGISTRY_ABI = [
    {
        "name": "invoices",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "bytes32"}],
        "outputs": [
            {"name": "seller", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "paid", "type": "bool"},
        ],
    },
    {
        "name": "createInvoice",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "invoiceId", "type": "bytes32"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "payInvoice",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "invoiceId", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "name": "withdraw",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "invoiceId", "type": "bytes32"}],
        "outputs": [],
    },
]

ERC20_ABI = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class EvmLedger:
    """
    PaymentRegistry adapter.

    Supports:
    - Invoice registration and withdrawal signed by the seller key
    - Invoice payment and token approval signed by the caller's account
    - Receipt polling with a bounded timeout
    """

    def __init__(
        self,
        rpc_url: str,
        registry_address: str,
        seller_private_key: str | None = None,
        chain_id: int | None = None,
        request_timeout: float = 30.0,
    ):
        self.w3 = AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self.registry_address = AsyncWeb3.to_checksum_address(registry_address)
        self.registry = self.w3.eth.contract(
            address=self.registry_address, abi=REGISTRY_ABI
        )
        self.seller: LocalAccount | None = (
            Account.from_key(seller_private_key) if seller_private_key else None
        )
        self.chain_id = chain_id
        # One broadcast at a time per account keeps nonces sequential
        self._nonce_locks: dict[str, asyncio.Lock] = {}

        logger.info(
            "evm_ledger_initialized",
            rpc_url=rpc_url,
            registry=self.registry_address,
            seller=self.seller.address if self.seller else None,
        )

    def get_reference(self) -> str:
        return self.registry_address

    def get_seller_address(self) -> str:
        if self.seller is None:
            raise ValueError("EvmLedger was created without a seller key")
        return self.seller.address

    async def get_invoice(self, invoice_id: str) -> LedgerInvoice:
        raw = await self._call(
            self.registry.functions.invoices(encode_invoice_id(invoice_id))
        )
        seller, token, amount, paid = raw
        return LedgerInvoice(
            invoice_id=invoice_id,
            seller=seller,
            token=token,
            amount=int(amount),
            paid=bool(paid),
        )

    async def create_invoice(self, invoice_id: str, token: str, amount: int) -> str:
        fn = self.registry.functions.createInvoice(
            encode_invoice_id(invoice_id), AsyncWeb3.to_checksum_address(token), amount
        )
        return await self._transact(fn, self._require_seller())

    async def pay_invoice(self, invoice_id: str, signer: LocalAccount) -> str:
        fn = self.registry.functions.payInvoice(encode_invoice_id(invoice_id))
        return await self._transact(fn, signer)

    async def withdraw(self, invoice_id: str) -> str:
        fn = self.registry.functions.withdraw(encode_invoice_id(invoice_id))
        return await self._transact(fn, self._require_seller())

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self._token(token)
        value = await self._call(
            contract.functions.allowance(
                AsyncWeb3.to_checksum_address(owner),
                AsyncWeb3.to_checksum_address(spender),
            )
        )
        return int(value)

    async def balance_of(self, token: str, owner: str) -> int:
        contract = self._token(token)
        value = await self._call(
            contract.functions.balanceOf(AsyncWeb3.to_checksum_address(owner))
        )
        return int(value)

    async def approve(
        self, token: str, signer: LocalAccount, spender: str, amount: int
    ) -> str:
        fn = self._token(token).functions.approve(
            AsyncWeb3.to_checksum_address(spender), amount
        )
        return await self._transact(fn, signer)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout
            )
        except TimeExhausted as e:
            raise TimeoutError(f"transaction {tx_hash} not final after {timeout}s") from e
        except Web3Exception as e:
            raise LedgerConnectionError(str(e)) from e
        except OSError as e:
            raise LedgerConnectionError(str(e)) from e

        if receipt["status"] != 1:
            raise LedgerRevert("transaction reverted", tx_hash=tx_hash)
        return TxReceipt(tx_hash=tx_hash, block_number=receipt.get("blockNumber"))

    # -- internals --------------------------------------------------------

    def _token(self, token: str):
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token), abi=ERC20_ABI
        )

    def _require_seller(self) -> LocalAccount:
        if self.seller is None:
            raise ValueError("EvmLedger was created without a seller key")
        return self.seller

    async def _call(self, fn):
        try:
            return await fn.call()
        except ContractLogicError as e:
            raise LedgerRevert(str(e.message or e)) from e
        except Web3Exception as e:
            raise LedgerConnectionError(str(e)) from e
        except OSError as e:
            raise LedgerConnectionError(str(e)) from e

    async def _transact(self, fn, account: LocalAccount) -> str:
        lock = self._nonce_locks.setdefault(account.address, asyncio.Lock())
        async with lock:
            try:
                params = {
                    "from": account.address,
                    "nonce": await self.w3.eth.get_transaction_count(
                        account.address, "pending"
                    ),
                }
                if self.chain_id is not None:
                    params["chainId"] = self.chain_id
                tx = await fn.build_transaction(params)
                signed = account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except ContractLogicError as e:
                # Raised during gas estimation when the call would revert
                raise LedgerRevert(str(e.message or e)) from e
            except Web3Exception as e:
                raise LedgerConnectionError(str(e)) from e
            except OSError as e:
                raise LedgerConnectionError(str(e)) from e

        tx_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(
            "evm_tx_submitted",
            function=fn.fn_name,
            sender=account.address,
            tx_hash=tx_hex,
        )
        return tx_hex
