"""
Ledger gateway.

The settlement core treats the chain as an opaque capability: read the
treasury's reward-token balance, tell whether the token still trades on its
bonding curve, broadcast a venue-built transaction, and transfer tokens or
native currency out of the treasury. SolanaGateway implements it over
JSON-RPC with solana-py and solders.
"""

import json
import logging
from abc import ABC, abstractmethod

import base58
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from .exceptions import ChainError, ConfigError, TransferError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
PUMP_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"

# Bonding curve account: 8-byte discriminator, five u64 reserves, then the
# "complete" flag.
BONDING_CURVE_COMPLETE_OFFSET = 48


def load_keypair(raw: str) -> Keypair:
    """
    Parse a keypair from a JSON byte array or a base58 secret key.

    Raises:
        ConfigError: If the key cannot be parsed
    """
    key = (raw or "").strip()
    if not key:
        raise ConfigError("Treasury private key is empty", action="load_keypair")
    try:
        if key.startswith("[") and key.endswith("]"):
            return Keypair.from_bytes(bytes(json.loads(key)))
        return Keypair.from_bytes(base58.b58decode(key))
    except Exception as e:
        raise ConfigError(f"Failed to load treasury keypair: {e}", action="load_keypair") from e


def is_valid_address(address: str) -> bool:
    """True if the string is a base58-encoded 32-byte public key."""
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


class LedgerGateway(ABC):
    """Capabilities the settlement core needs from the chain."""

    @property
    @abstractmethod
    def treasury_address(self) -> str:
        """Public address of the treasury wallet."""

    @abstractmethod
    def token_balance(self) -> int:
        """Treasury reward-token balance in whole tokens."""

    @abstractmethod
    def is_graduated(self) -> bool:
        """True once the reward token left its bonding curve."""

    @abstractmethod
    def sign_and_send(self, raw_transaction: bytes) -> str:
        """Sign a venue-built transaction with the treasury key and broadcast it."""

    @abstractmethod
    def confirm(self, signature: str) -> None:
        """Block until the transaction is confirmed. Raises ChainError otherwise."""

    @abstractmethod
    def transfer_tokens(self, amount: int, recipient: str) -> str:
        """Send whole reward tokens from the treasury. Raises TransferError."""

    @abstractmethod
    def transfer_native(self, amount: float, recipient: str) -> str:
        """Send native currency from the treasury. Raises TransferError."""


class SolanaGateway(LedgerGateway):
    """
    LedgerGateway over Solana JSON-RPC.

    The treasury keypair signs everything; the token account is the
    treasury's associated token account for the reward mint.
    """

    def __init__(self, rpc_url: str, keypair: Keypair, token_mint: str):
        self.client = Client(rpc_url, commitment=Confirmed)
        self.keypair = keypair
        self.mint = Pubkey.from_string(token_mint)
        self._decimals: int | None = None

    @property
    def treasury_address(self) -> str:
        return str(self.keypair.pubkey())

    @property
    def treasury_token_account(self) -> Pubkey:
        return get_associated_token_address(self.keypair.pubkey(), self.mint)

    def decimals(self) -> int:
        if self._decimals is None:
            try:
                self._decimals = self.client.get_token_supply(self.mint).value.decimals
            except Exception as e:
                raise ChainError(f"Could not read mint decimals: {e}", action="decimals") from e
        return self._decimals

    def token_balance(self) -> int:
        try:
            value = self.client.get_token_account_balance(self.treasury_token_account).value
        except Exception as e:
            raise ChainError(f"Balance query failed: {e}", action="token_balance") from e
        return int(value.amount) // (10 ** value.decimals)

    def bonding_curve_address(self) -> Pubkey:
        address, _bump = Pubkey.find_program_address(
            [b"bonding-curve", bytes(self.mint)],
            Pubkey.from_string(PUMP_PROGRAM),
        )
        return address

    def is_graduated(self) -> bool:
        try:
            account = self.client.get_account_info(self.bonding_curve_address()).value
        except Exception as e:
            logger.warning("Graduation check failed, assuming graduated: %s", e)
            return True

        if account is None:
            return True
        data = bytes(account.data)
        if len(data) <= BONDING_CURVE_COMPLETE_OFFSET:
            return True
        return data[BONDING_CURVE_COMPLETE_OFFSET] == 1

    def sign_and_send(self, raw_transaction: bytes) -> str:
        try:
            unsigned = VersionedTransaction.from_bytes(raw_transaction)
            signed = VersionedTransaction(unsigned.message, [self.keypair])
            response = self.client.send_raw_transaction(
                bytes(signed),
                opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=3),
            )
        except Exception as e:
            raise ChainError(f"Broadcast failed: {e}", action="sign_and_send") from e

        signature = str(response.value)
        logger.info("Transaction sent: https://solscan.io/tx/%s", signature)
        return signature

    def confirm(self, signature: str) -> None:
        try:
            response = self.client.confirm_transaction(
                Signature.from_string(signature), commitment=Confirmed
            )
        except Exception as e:
            raise ChainError(f"Confirmation failed: {e}", action="confirm") from e

        statuses = response.value or []
        if statuses and statuses[0] is not None and statuses[0].err is not None:
            raise ChainError(
                f"Transaction failed on chain: {statuses[0].err}",
                action="confirm",
                details={"signature": signature},
            )

    def _send_instructions(self, instructions: list) -> str:
        blockhash = self.client.get_latest_blockhash().value.blockhash
        message = Message(instructions, self.keypair.pubkey())
        tx = Transaction([self.keypair], message, blockhash)
        response = self.client.send_raw_transaction(
            bytes(tx), opts=TxOpts(preflight_commitment=Confirmed)
        )
        signature = str(response.value)
        self.confirm(signature)
        return signature

    def transfer_tokens(self, amount: int, recipient: str) -> str:
        if amount <= 0:
            raise TransferError("Transfer amount must be positive", action="transfer_tokens")
        try:
            owner = Pubkey.from_string(recipient)
            destination = get_associated_token_address(owner, self.mint)
            decimals = self.decimals()

            instructions = []
            if self.client.get_account_info(destination).value is None:
                instructions.append(
                    create_associated_token_account(self.keypair.pubkey(), owner, self.mint)
                )
            instructions.append(
                transfer_checked(
                    TransferCheckedParams(
                        program_id=TOKEN_PROGRAM_ID,
                        source=self.treasury_token_account,
                        mint=self.mint,
                        dest=destination,
                        owner=self.keypair.pubkey(),
                        amount=int(amount) * (10 ** decimals),
                        decimals=decimals,
                    )
                )
            )
            signature = self._send_instructions(instructions)
        except TransferError:
            raise
        except Exception as e:
            raise TransferError(
                f"Token transfer failed: {e}",
                action="transfer_tokens",
                details={"recipient": recipient, "amount": amount},
                cause=e,
            ) from e

        logger.info("Transferred %s tokens to %s (%s)", amount, recipient, signature)
        return signature

    def transfer_native(self, amount: float, recipient: str) -> str:
        lamports = int(round(amount * LAMPORTS_PER_SOL))
        if lamports <= 0:
            raise TransferError("Transfer amount must be positive", action="transfer_native")
        try:
            instruction = transfer(
                TransferParams(
                    from_pubkey=self.keypair.pubkey(),
                    to_pubkey=Pubkey.from_string(recipient),
                    lamports=lamports,
                )
            )
            signature = self._send_instructions([instruction])
        except Exception as e:
            raise TransferError(
                f"Native transfer failed: {e}",
                action="transfer_native",
                details={"recipient": recipient, "amount": amount},
                cause=e,
            ) from e

        logger.info("Transferred %.6f SOL to %s (%s)", amount, recipient, signature)
        return signature
