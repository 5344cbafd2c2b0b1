"""
Ledger capability and the process-wide shared ledger configuration.

Tenants are provisioned by deploying a contract on a ledger: the deploy
wallet pays for it, and the contract id becomes the tenant handle. The
ledger client, the wallet and the index provider together form the
SharedLedgerConfig, which is built once per process.
"""

import asyncio
import base64
import hashlib
import json
import logging
import os
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from ..config import MemvaultConfig, load_config
from .index import IndexProvider, create_index_provider
from .singleflight import SingleFlight
from .types import HNSWParams

logger = logging.getLogger(__name__)


def _b64url_digest(data: bytes) -> str:
    """43-character base64url SHA-256 digest."""
    return base64.urlsafe_b64encode(hashlib.sha256(data).digest()).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class Wallet:
    """
    Deploy wallet keyfile.

    Attributes:
        key: Secret key material
        path: Keyfile location, if loaded from disk
    """

    key: str
    path: Optional[str] = None

    @classmethod
    def generate(cls, path: Optional[str] = None) -> "Wallet":
        """Create a wallet with fresh key material (not written to disk)."""
        return cls(key=secrets.token_urlsafe(32), path=path)

    def __repr__(self) -> str:
        return f"Wallet(path={self.path!r})"


def load_wallet(path: str, create: bool = False) -> Wallet:
    """
    Load the deploy wallet from a JSON keyfile.

    Args:
        path: Keyfile path
        create: Generate and write a keyfile when it does not exist

    Returns:
        The wallet

    Raises:
        FileNotFoundError: If the keyfile is missing and ``create`` is False
        ValueError: If the keyfile is not a valid wallet
    """
    keyfile = Path(path).expanduser()
    if not keyfile.exists():
        if not create:
            raise FileNotFoundError(f"Wallet keyfile not found: {keyfile}")
        wallet = Wallet.generate(str(keyfile))
        keyfile.parent.mkdir(parents=True, exist_ok=True)
        with keyfile.open("w", encoding="utf-8") as fh:
            json.dump({"kty": "local", "key": wallet.key}, fh)
        os.chmod(keyfile, 0o600)
        logger.info(f"Generated development wallet at {keyfile}")
        return wallet

    with keyfile.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    key = data.get("key") if isinstance(data, dict) else None
    if not key:
        raise ValueError(f"Wallet keyfile has no key: {keyfile}")
    return Wallet(key=key, path=str(keyfile))


class LedgerClient(ABC):
    """Abstract base class for ledgers that provision tenant contracts."""

    @abstractmethod
    async def get_address(self, wallet: Wallet) -> str:
        """Address of a wallet on the ledger."""
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> float:
        """Balance of an address, in whole tokens."""
        pass

    @abstractmethod
    async def deploy(self, wallet: Wallet, owner: str) -> str:
        """
        Deploy a new tenant contract paid for by ``wallet``.

        Args:
            wallet: Paying wallet
            owner: Address recorded as the contract owner

        Returns:
            The new contract id
        """
        pass


class LocalLedger(LedgerClient):
    """
    In-process development ledger.

    Models only what provisioning needs: addresses derived from wallet
    keys, mintable balances, a per-deploy fee and contract ids in the
    43-character base64url form used by permanent-storage ledgers.
    """

    def __init__(self, deploy_fee: float = 0.0):
        """
        Initialize the ledger.

        Args:
            deploy_fee: Tokens charged per deploy
        """
        self.deploy_fee = deploy_fee
        self._balances: Dict[str, float] = {}
        self._contracts: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_address(self, wallet: Wallet) -> str:
        return _b64url_digest(wallet.key.encode("utf-8"))

    async def get_balance(self, address: str) -> float:
        return self._balances.get(address, 0.0)

    async def mint(self, address: str, amount: float) -> float:
        """Credit tokens to an address and return the new balance."""
        if amount < 0:
            raise ValueError("Cannot mint a negative amount")
        async with self._lock:
            self._balances[address] = self._balances.get(address, 0.0) + amount
            return self._balances[address]

    async def deploy(self, wallet: Wallet, owner: str) -> str:
        address = await self.get_address(wallet)
        async with self._lock:
            balance = self._balances.get(address, 0.0)
            if balance < self.deploy_fee:
                raise ValueError(
                    f"Balance {balance} is below the deploy fee {self.deploy_fee}"
                )
            self._balances[address] = balance - self.deploy_fee
            contract_id = _b64url_digest(secrets.token_bytes(32))
            self._contracts[contract_id] = owner
        logger.debug(f"Deployed contract {contract_id} for {owner}")
        return contract_id

    def owner_of(self, contract_id: str) -> Optional[str]:
        """Owner recorded for a contract, if it exists."""
        return self._contracts.get(contract_id)


@dataclass(frozen=True)
class SharedLedgerConfig:
    """
    Process-wide ledger configuration shared by every tenant store.

    Read-only once built.

    Attributes:
        ledger: Ledger used to provision tenants
        wallet: Deploy wallet
        owner_address: Address of the deploy wallet
        index_provider: Creates and opens tenant indexes
        environment: "development" or "production"
        hnsw_params: Default index parameters
        settings: The configuration the shared config was built from
    """

    ledger: LedgerClient
    wallet: Wallet
    owner_address: str
    index_provider: IndexProvider
    environment: str
    hnsw_params: HNSWParams
    settings: MemvaultConfig

    @property
    def is_production(self) -> bool:
        return self.settings.ledger.is_production


async def build_shared_config(config: Optional[MemvaultConfig] = None) -> SharedLedgerConfig:
    """
    Build the shared ledger configuration.

    Loads the deploy wallet (generating one in development), creates the
    local ledger and the index provider, and funds the wallet in
    development when auto-funding is on.

    Args:
        config: Configuration; loaded from the usual sources when omitted

    Returns:
        A new SharedLedgerConfig
    """
    config = config or load_config()
    ledger_config = config.ledger
    loop = asyncio.get_running_loop()

    logger.info(f"Building shared ledger config ({ledger_config.environment})")
    wallet = await loop.run_in_executor(
        None, lambda: load_wallet(ledger_config.wallet_path, create=not ledger_config.is_production)
    )

    ledger = LocalLedger(deploy_fee=ledger_config.deploy_fee)
    address = await ledger.get_address(wallet)

    if not ledger_config.is_production and ledger_config.auto_fund:
        balance = await ledger.mint(address, ledger_config.initial_balance)
        logger.info(f"Auto-funded development wallet {address}: {balance}")

    return SharedLedgerConfig(
        ledger=ledger,
        wallet=wallet,
        owner_address=address,
        index_provider=create_index_provider(config.index),
        environment=ledger_config.environment,
        hnsw_params=HNSWParams.from_config(config.index),
        settings=config,
    )


_shared_config: SingleFlight[SharedLedgerConfig] = SingleFlight(
    build_shared_config, name="shared-ledger-config"
)


async def get_shared_config() -> SharedLedgerConfig:
    """
    Get the shared ledger configuration, building it on first use.

    Concurrent first callers share one build; a failed build is not
    cached.
    """
    return await _shared_config.get_or_init()


def reset_shared_config(
    initializer: Optional[Callable[[], Awaitable[SharedLedgerConfig]]] = None,
) -> None:
    """
    Forget the shared configuration.

    Args:
        initializer: Replacement builder; the default builder is restored when omitted
    """
    _shared_config.reset(initializer or build_shared_config)
