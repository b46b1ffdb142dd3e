"""EVM ledger client — tokens held in an on-chain asset registry contract.

Each primitive is a signed transaction to the registry contract, sent
through a web3 HTTP provider and confirmed by waiting for its receipt.
The registry keeps per-issuer token balances and trust lines and
implements issuer freezing; this client only builds, signs and submits.

Token codes are encoded as bytes12. Token amounts are fixed-point
integers with AMOUNT_DECIMALS places; native amounts are in ether.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from openfinancing.errors import LedgerError
from openfinancing.identity.keys import Keypair

logger = logging.getLogger(__name__)

AMOUNT_DECIMALS = 7
AMOUNT_SCALE = Decimal(10) ** AMOUNT_DECIMALS

REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "trust",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "code", "type": "bytes12"},
            {"name": "issuer", "type": "address"},
            {"name": "limit", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "issue",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "code", "type": "bytes12"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "transfer",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "code", "type": "bytes12"},
            {"name": "issuer", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "freeze",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [
            {"name": "holder", "type": "address"},
            {"name": "code", "type": "bytes12"},
            {"name": "issuer", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "isFrozen",
        "stateMutability": "view",
        "inputs": [{"name": "issuer", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


def encode_code(code: str) -> bytes:
    """Encode an asset code as a right-padded bytes12 value."""
    raw = code.encode("ascii")
    if not raw or len(raw) > 12:
        raise LedgerError(f"Asset code must be 1-12 ASCII characters: {code!r}")
    return raw.ljust(12, b"\x00")


def to_units(amount: Decimal) -> int:
    units = amount * AMOUNT_SCALE
    if units != units.to_integral_value():
        raise LedgerError(f"Amount {amount} has more than {AMOUNT_DECIMALS} decimal places")
    return int(units)


def from_units(units: int) -> Decimal:
    return Decimal(units) / AMOUNT_SCALE


class EvmLedgerClient:
    """LedgerClient backed by an asset registry contract on an EVM chain.

    Usage:
        client = EvmLedgerClient(
            registry_address="0x...",
            rpc_url="https://sepolia.example/rpc",
            chain_id=11155111,
        )
    """

    def __init__(
        self,
        registry_address: str,
        rpc_url: Optional[str] = None,
        chain_id: int = 11155111,  # Sepolia
        w3: Any = None,
        gas: int = 200_000,
        gas_price_gwei: str = "2",
        receipt_timeout: int = 300,
    ) -> None:
        if w3 is None:
            if not rpc_url:
                raise ValueError("EvmLedgerClient needs an rpc_url or a web3 instance")
            from web3 import Web3, HTTPProvider

            w3 = Web3(HTTPProvider(rpc_url))
        self._w3 = w3
        self._chain_id = chain_id
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._receipt_timeout = receipt_timeout
        self._registry = w3.eth.contract(
            address=w3.to_checksum_address(registry_address),
            abi=REGISTRY_ABI,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def native_balance(self, address: str) -> Decimal:
        wei = self._w3.eth.get_balance(self._w3.to_checksum_address(address))
        return Decimal(wei) / Decimal(10) ** 18

    def asset_balance(self, address: str, code: str, issuer: Optional[str] = None) -> Decimal:
        if issuer is None:
            raise LedgerError("The asset registry requires the issuer to query a balance")
        units = self._registry.functions.balanceOf(
            self._w3.to_checksum_address(address),
            encode_code(code),
            self._w3.to_checksum_address(issuer),
        ).call()
        return from_units(units)

    def is_frozen(self, address: str) -> bool:
        return bool(
            self._registry.functions.isFrozen(self._w3.to_checksum_address(address)).call()
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def fund_from_faucet(self, address: str) -> str:
        raise LedgerError("EVM networks have no built-in faucet; fund from the platform")

    def send_native(self, source: Keypair, destination: str, amount: Decimal) -> str:
        tx = {
            "to": self._w3.to_checksum_address(destination),
            "value": self._w3.to_wei(amount, "ether"),
            "gas": 21_000,
            "gasPrice": self._w3.to_wei(self._gas_price_gwei, "gwei"),
            "nonce": self._w3.eth.get_transaction_count(source.address),
            "chainId": self._chain_id,
        }
        return self._sign_and_send(source, tx)

    def create_trust_line(
        self, holder: Keypair, issuer: str, code: str, limit: Decimal
    ) -> str:
        fn = self._registry.functions.trust(
            encode_code(code), self._w3.to_checksum_address(issuer), to_units(limit)
        )
        return self._submit(holder, fn)

    def issue_asset(
        self, issuer: Keypair, code: str, destination: str, amount: Decimal
    ) -> str:
        fn = self._registry.functions.issue(
            encode_code(code), self._w3.to_checksum_address(destination), to_units(amount)
        )
        return self._submit(issuer, fn)

    def transfer_asset(
        self,
        holder: Keypair,
        code: str,
        issuer: str,
        destination: str,
        amount: Decimal,
    ) -> str:
        fn = self._registry.functions.transfer(
            encode_code(code),
            self._w3.to_checksum_address(issuer),
            self._w3.to_checksum_address(destination),
            to_units(amount),
        )
        return self._submit(holder, fn)

    def freeze_issuer(self, issuer: Keypair) -> str:
        return self._submit(issuer, self._registry.functions.freeze())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _submit(self, signer: Keypair, fn: Any) -> str:
        tx = fn.build_transaction({
            "from": signer.address,
            "gas": self._gas,
            "gasPrice": self._w3.to_wei(self._gas_price_gwei, "gwei"),
            "nonce": self._w3.eth.get_transaction_count(signer.address),
            "chainId": self._chain_id,
        })
        return self._sign_and_send(signer, tx)

    def _sign_and_send(self, signer: Keypair, tx: dict[str, Any]) -> str:
        from eth_account import Account

        tx = {k: v for k, v in tx.items() if k != "from"}
        signed = Account.sign_transaction(tx, signer.private_key)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug("Sent tx %s, waiting for confirmation", tx_hash.hex())

        receipt = self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self._receipt_timeout
        )
        if receipt["status"] != 1:
            raise LedgerError(f"Transaction {tx_hash.hex()} reverted")
        logger.debug("Confirmed %s in block %s", tx_hash.hex(), receipt["blockNumber"])
        return tx_hash.hex()
