from __future__ import annotations

import os
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from swapledger.factory import EscrowFactory
from swapledger.settlement import OrderSettlementBridge


def _get_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return int(val)


def _get_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


class Settings:
    database_url: str = os.getenv("DATABASE_URL") or os.getenv("SWAPLEDGER_DATABASE_URL", "sqlite:///./swapledger.db")

    # Ledger identity
    chain_id: int = _get_int("SWAPLEDGER_CHAIN_ID", 1)
    factory_address: str = os.getenv("SWAPLEDGER_FACTORY_ADDRESS", "0x" + "fa" * 20)
    settlement_address: str = os.getenv("SWAPLEDGER_SETTLEMENT_ADDRESS", "0x" + "5e" * 20)
    access_token: str = os.getenv("SWAPLEDGER_ACCESS_TOKEN", "0x" + "ac" * 20)

    # 8 days, the usual rescue delay for both legs
    rescue_delay_src: int = _get_int("SWAPLEDGER_RESCUE_DELAY_SRC", 691_200)
    rescue_delay_dst: int = _get_int("SWAPLEDGER_RESCUE_DELAY_DST", 691_200)

    api_key_salt_rounds: int = _get_int("SWAPLEDGER_API_KEY_SALT_ROUNDS", 10)
    require_signatures: bool = _get_bool("SWAPLEDGER_REQUIRE_SIGNATURES", False)
    signature_max_age_seconds: int = _get_int("SWAPLEDGER_SIGNATURE_MAX_AGE_SECONDS", 300)

    # Open deposits mint balances on request; disable outside of test ledgers.
    allow_deposits: bool = _get_bool("SWAPLEDGER_ALLOW_DEPOSITS", True)

    auto_create_schema: bool = _get_bool("SWAPLEDGER_AUTO_CREATE_SCHEMA", True)

    host: str = os.getenv("SWAPLEDGER_HOST", "127.0.0.1")
    port: int = _get_int("SWAPLEDGER_PORT", 3000)

    # Webhooks
    webhook_timeout_seconds: int = _get_int("SWAPLEDGER_WEBHOOK_TIMEOUT", 10)
    webhook_max_retries: int = _get_int("SWAPLEDGER_WEBHOOK_MAX_RETRIES", 3)

    # Cancellation sweep
    sweep_interval_seconds: int = _get_int("SWAPLEDGER_SWEEP_INTERVAL_SECONDS", 60)
    sweep_enabled: bool = _get_bool("SWAPLEDGER_SWEEP_ENABLED", True)


settings = Settings()


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite:"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    class_=Session,
    expire_on_commit=False,
    autoflush=False,
    autobegin=False,
)


def get_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


factory = EscrowFactory(
    settings.factory_address,
    access_token=settings.access_token,
    rescue_delay_src=settings.rescue_delay_src,
    rescue_delay_dst=settings.rescue_delay_dst,
    chain_id=settings.chain_id,
)

bridge = OrderSettlementBridge(factory, verifying_contract=settings.settlement_address)
