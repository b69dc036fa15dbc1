from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from vipsync import crud
from vipsync.api.deps import get_db
from vipsync.core import security
from vipsync.core.cache import ProcessedMarkers
from vipsync.core.redis_client import get_redis_client
from vipsync.enums import UserRole
from vipsync.integrations import discord as discord_module
from vipsync.integrations import mercadopago as mercadopago_module
from vipsync.integrations import rust_server as rust_module
from vipsync.integrations.result import ProvisionResult
from vipsync.main import app
from vipsync.models import Subscription, SystemLog, User
from vipsync.services.payment_processor import PaymentProcessor, get_payment_processor

STEAM_ID = "76561198000000001"


class FakeRedis:
    """内存版 RedisClient（锁 + JSON 缓存）"""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.locks: dict[str, str] = {}
        self.available = True

    def ping(self) -> bool:
        return self.available

    def acquire_lock(self, lock_key: str, lock_value: str, expire_seconds: int = 60) -> bool:
        if not self.available or lock_key in self.locks:
            return False
        self.locks[lock_key] = lock_value
        return True

    def release_lock(self, lock_key: str, lock_value: str) -> bool:
        if self.locks.get(lock_key) == lock_value:
            del self.locks[lock_key]
            return True
        return False

    def get_json(self, key: str) -> Any | None:
        return self.store.get(key)

    def set_json(self, key: str, value: Any, ex: int | None = None) -> bool:
        self.store[key] = value
        return True


class FakeMercadoPago:
    """预置支付 / 商户订单数据的支付服务客户端"""

    configured = True

    def __init__(self) -> None:
        self.payments: dict[str, dict[str, Any]] = {}
        self.orders: dict[str, dict[str, Any]] = {}
        self.preferences: list[dict[str, Any]] = []
        self.payment_calls: list[str] = []
        self.error: Exception | None = None

    def add_payment(self, payment_id: str, **fields: Any) -> dict[str, Any]:
        payment = {"id": payment_id, "status": "approved", **fields}
        self.payments[payment_id] = payment
        return payment

    def get_payment_status(self, payment_id: str) -> dict[str, Any]:
        self.payment_calls.append(payment_id)
        if self.error is not None:
            raise self.error
        return self.payments.get(payment_id, {"id": payment_id, "status": "pending"})

    def get_merchant_order(self, order_id: str) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        return self.orders.get(order_id, {"id": order_id, "payments": []})

    def create_preference(self, **kwargs: Any) -> dict[str, Any]:
        self.preferences.append(kwargs)
        n = len(self.preferences)
        return {
            "id": f"pref-{n}",
            "init_point": f"https://mp.example.com/checkout/pref-{n}",
            "sandbox_init_point": f"https://sandbox.mp.example.com/checkout/pref-{n}",
        }


class FakeDiscord:
    configured = True

    def __init__(self) -> None:
        self.added: list[tuple[str | None, str | None]] = []
        self.removed: list[str | None] = []
        self.result = ProvisionResult.success()

    def add_vip_role(self, discord_id, plan_id="vip-basic") -> ProvisionResult:
        self.added.append((discord_id, plan_id))
        return self.result

    def remove_vip_roles(self, discord_id) -> ProvisionResult:
        self.removed.append(discord_id)
        return self.result


class FakeRust:
    configured = True

    def __init__(self) -> None:
        self.added: list[tuple[str | None, int]] = []
        self.removed: list[str | None] = []
        self.result = ProvisionResult.success()

    def add_vip(self, steam_id, days=30) -> ProvisionResult:
        self.added.append((steam_id, days))
        return self.result

    def remove_vip(self, steam_id) -> ProvisionResult:
        self.removed.append(steam_id)
        return self.result


@dataclass
class Fakes:
    mercadopago: FakeMercadoPago
    discord: FakeDiscord
    rust: FakeRust
    redis: FakeRedis
    processor: PaymentProcessor


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(SystemLog))
        session.exec(delete(Subscription))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function", autouse=True)
def fakes(monkeypatch) -> Generator[Fakes, None, None]:
    """所有外部依赖（支付服务、Discord、Rust、Redis）替换为内存实现"""
    mp = FakeMercadoPago()
    discord = FakeDiscord()
    rust = FakeRust()
    redis = FakeRedis()
    processor = PaymentProcessor(client=mp, markers=ProcessedMarkers(max_entries=100))  # type: ignore[arg-type]

    monkeypatch.setattr(mercadopago_module, "_mercadopago_client", mp)
    monkeypatch.setattr(discord_module, "_discord_client", discord)
    monkeypatch.setattr(rust_module, "_rust_client", rust)
    app.dependency_overrides[get_payment_processor] = lambda: processor
    app.dependency_overrides[get_redis_client] = lambda: redis

    yield Fakes(mercadopago=mp, discord=discord, rust=rust, redis=redis, processor=processor)

    app.dependency_overrides.pop(get_payment_processor, None)
    app.dependency_overrides.pop(get_redis_client, None)


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_db, None)


def make_user(
    db: Session,
    *,
    user_id: str = "u1",
    discord_id: str | None = "111111111111111111",
    steam_id: str | None = STEAM_ID,
    role: UserRole = UserRole.user,
) -> User:
    return crud.create_user(
        session=db, user_id=user_id, discord_id=discord_id, steam_id=steam_id, role=role
    )


def auth_headers(user_id: str) -> dict[str, str]:
    token = security.create_access_token(user_id, timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}
