from __future__ import annotations

import importlib
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import pytest
from eth_account import Account
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))
sys.path.insert(0, str(REPO_ROOT / "sdk"))

from swapledger import ledger  # noqa: E402
from swapledger.factory import EscrowFactory  # noqa: E402
from swapledger.models import Base  # noqa: E402
from swapledger.settlement import OrderSettlementBridge  # noqa: E402

ACCESS_TOKEN = "0x" + "ac" * 20
SETTLEMENT_ADDRESS = "0x" + "5e" * 20
RESCUE_DELAY = 691_200

MAKER_KEY = "0x" + "11" * 32
RESOLVER_KEY = "0x" + "22" * 32
STRANGER_KEY = "0x" + "33" * 32


class LedgerHarness:
    """One ledger's database, factory and settlement bridge for core-level tests."""

    def __init__(self, path: Path, *, chain_id: int, factory_address: str) -> None:
        self.engine = create_engine(f"sqlite:///{path}", future=True, connect_args={"check_same_thread": False})
        Base.metadata.create_all(bind=self.engine)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            class_=Session,
            expire_on_commit=False,
            autoflush=False,
            autobegin=False,
        )
        self.access_token = ACCESS_TOKEN
        self.factory = EscrowFactory(
            factory_address,
            access_token=ACCESS_TOKEN,
            rescue_delay_src=RESCUE_DELAY,
            rescue_delay_dst=RESCUE_DELAY,
            chain_id=chain_id,
        )
        self.bridge = OrderSettlementBridge(self.factory, verifying_contract=SETTLEMENT_ADDRESS)

    @contextmanager
    def tx(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            with session.begin():
                yield session
        finally:
            session.close()

    def mint(self, owner: str, asset: str, amount: int) -> None:
        with self.tx() as session:
            ledger.credit(session, owner, asset, amount)

    def balance(self, owner: str, asset: str) -> int:
        with self.tx() as session:
            return ledger.balance_of(session, owner, asset)

    def dispose(self) -> None:
        self.engine.dispose()


@pytest.fixture()
def src(tmp_path: Path):
    harness = LedgerHarness(tmp_path / "src.db", chain_id=1, factory_address="0x" + "fa" * 20)
    yield harness
    harness.dispose()


@pytest.fixture()
def dst(tmp_path: Path):
    harness = LedgerHarness(tmp_path / "dst.db", chain_id=56, factory_address="0x" + "fb" * 20)
    yield harness
    harness.dispose()


@pytest.fixture()
def maker():
    return Account.from_key(MAKER_KEY)


@pytest.fixture()
def resolver():
    return Account.from_key(RESOLVER_KEY)


@pytest.fixture()
def stranger():
    return Account.from_key(STRANGER_KEY)


@pytest.fixture()
def swap_app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    # Isolated DB per test.
    monkeypatch.setenv("SWAPLEDGER_DATABASE_URL", f"sqlite:///{tmp_path / 'swapledger.db'}")
    monkeypatch.setenv("SWAPLEDGER_AUTO_CREATE_SCHEMA", "true")
    monkeypatch.setenv("SWAPLEDGER_CHAIN_ID", "1")
    monkeypatch.setenv("SWAPLEDGER_ACCESS_TOKEN", ACCESS_TOKEN)
    monkeypatch.setenv("SWAPLEDGER_SETTLEMENT_ADDRESS", SETTLEMENT_ADDRESS)
    monkeypatch.setenv("SWAPLEDGER_API_KEY_SALT_ROUNDS", "4")
    monkeypatch.setenv("SWAPLEDGER_SWEEP_ENABLED", "false")
    monkeypatch.setenv("SWAPLEDGER_ALLOW_DEPOSITS", "true")

    import swapledger.config as config_mod
    import swapledger.auth as auth_mod
    import swapledger.middleware as middleware_mod
    import swapledger.webhooks as webhooks_mod
    import swapledger.tasks as tasks_mod
    import swapledger.routes.accounts as accounts_mod
    import swapledger.routes.ledger as ledger_mod
    import swapledger.routes.escrows as escrows_mod
    import swapledger.routes.orders as orders_mod
    import swapledger.routes.webhooks as webhook_routes_mod
    import swapledger.app as app_mod

    importlib.reload(config_mod)
    importlib.reload(auth_mod)
    importlib.reload(middleware_mod)
    importlib.reload(webhooks_mod)
    importlib.reload(tasks_mod)
    importlib.reload(accounts_mod)
    importlib.reload(ledger_mod)
    importlib.reload(escrows_mod)
    importlib.reload(orders_mod)
    importlib.reload(webhook_routes_mod)
    importlib.reload(app_mod)

    yield app_mod.create_app()
    config_mod.engine.dispose()


@pytest.fixture()
def auth_header():
    def _auth(api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    return _auth
