"""Platform configuration — parameters from JSON, secrets from the environment.

Parameters that shape engine behaviour (payment token, verification
tolerance, issuer reserve, payback policy) are loaded from
config/platform_params.json. Secrets (keystore passwords, RPC endpoint,
SMTP credentials) never live in that file; they are read from the process
environment, which the CLI populates from a .env file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional


DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
PARAMS_FILENAME = "platform_params.json"

TESTNET = "testnet"
MAINNET = "mainnet"


@dataclass(frozen=True)
class EngineConfig:
    """Engine parameters. All monetary values are Decimal."""

    network: str = TESTNET
    payment_token_code: str = "STABLEUSD"
    payment_token_issuer: str = ""
    payment_token_trust_limit: Decimal = Decimal("1000000000")
    payment_tolerance: Decimal = Decimal("1")
    confirmation_delay_seconds: float = 5.0
    issuer_reserve: Decimal = Decimal("10")
    faucet_amount: Decimal = Decimal("10000")
    oracle_amount_due: Decimal = Decimal("200")
    payback_trust_multiplier: int = 2
    debt_trust_multiplier: int = 2
    payback_interval_days: int = 30
    notifications_enabled: bool = True
    notifications_async: bool = True
    notification_sender: str = "notifications@openfinancing.org"
    smtp_host: str = "localhost"
    smtp_port: int = 587

    def __post_init__(self) -> None:
        if self.network not in (TESTNET, MAINNET):
            raise ValueError(f"Unknown network: {self.network}")
        if self.payment_tolerance < Decimal("0"):
            raise ValueError("payment_tolerance must be non-negative")
        if self.confirmation_delay_seconds < 0:
            raise ValueError("confirmation_delay_seconds must be non-negative")
        if self.issuer_reserve < Decimal("0"):
            raise ValueError("issuer_reserve must be non-negative")

    @property
    def is_testnet(self) -> bool:
        return self.network == TESTNET

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> EngineConfig:
        """Build a config from the parsed platform_params.json document."""
        token = params.get("payment_token", {})
        inv = params.get("investment", {})
        pb = params.get("payback", {})
        notif = params.get("notifications", {})
        defaults = cls()
        return cls(
            network=params.get("network", defaults.network),
            payment_token_code=token.get("code", defaults.payment_token_code),
            payment_token_issuer=token.get("issuer", defaults.payment_token_issuer),
            payment_token_trust_limit=Decimal(
                str(token.get("trust_limit", defaults.payment_token_trust_limit))
            ),
            payment_tolerance=Decimal(
                str(inv.get("payment_tolerance", defaults.payment_tolerance))
            ),
            confirmation_delay_seconds=float(
                inv.get("confirmation_delay_seconds", defaults.confirmation_delay_seconds)
            ),
            issuer_reserve=Decimal(str(inv.get("issuer_reserve", defaults.issuer_reserve))),
            faucet_amount=Decimal(str(inv.get("faucet_amount", defaults.faucet_amount))),
            oracle_amount_due=Decimal(
                str(pb.get("oracle_amount_due", defaults.oracle_amount_due))
            ),
            payback_trust_multiplier=int(
                pb.get("payback_trust_multiplier", defaults.payback_trust_multiplier)
            ),
            debt_trust_multiplier=int(
                pb.get("debt_trust_multiplier", defaults.debt_trust_multiplier)
            ),
            payback_interval_days=int(
                pb.get("payback_interval_days", defaults.payback_interval_days)
            ),
            notifications_enabled=bool(notif.get("enabled", defaults.notifications_enabled)),
            notifications_async=bool(notif.get("asynchronous", defaults.notifications_async)),
            notification_sender=notif.get("sender", defaults.notification_sender),
            smtp_host=notif.get("smtp_host", defaults.smtp_host),
            smtp_port=int(notif.get("smtp_port", defaults.smtp_port)),
        )

    @classmethod
    def from_params_file(cls, path: Path) -> EngineConfig:
        """Load from a platform_params.json file."""
        params = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_params(params)

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> EngineConfig:
        return cls.from_params_file(config_dir / PARAMS_FILENAME)


@dataclass(frozen=True)
class Secrets:
    """Credentials read from the environment.

    Environment variables:
        OPENFINANCING_PLATFORM_PASSWORD: unlocks the platform keystore.
        OPENFINANCING_ISSUER_PASSWORD: encrypts/decrypts issuer keystores.
        OPENFINANCING_RPC_URL: EVM ledger endpoint (optional).
        OPENFINANCING_REGISTRY_ADDRESS: asset registry contract (optional).
        OPENFINANCING_CHAIN_ID: EVM chain id (optional).
        OPENFINANCING_SMTP_USER / OPENFINANCING_SMTP_PASSWORD (optional).
    """

    platform_password: str
    issuer_password: str
    rpc_url: Optional[str] = None
    registry_address: Optional[str] = None
    chain_id: Optional[int] = None
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Secrets:
        env = os.environ if environ is None else environ
        platform_password = env.get("OPENFINANCING_PLATFORM_PASSWORD")
        issuer_password = env.get("OPENFINANCING_ISSUER_PASSWORD")
        if not platform_password or not issuer_password:
            raise ValueError(
                "OPENFINANCING_PLATFORM_PASSWORD and OPENFINANCING_ISSUER_PASSWORD "
                "must be set"
            )
        chain_id = env.get("OPENFINANCING_CHAIN_ID")
        return cls(
            platform_password=platform_password,
            issuer_password=issuer_password,
            rpc_url=env.get("OPENFINANCING_RPC_URL") or None,
            registry_address=env.get("OPENFINANCING_REGISTRY_ADDRESS") or None,
            chain_id=int(chain_id) if chain_id else None,
            smtp_user=env.get("OPENFINANCING_SMTP_USER") or None,
            smtp_password=env.get("OPENFINANCING_SMTP_PASSWORD") or None,
        )
