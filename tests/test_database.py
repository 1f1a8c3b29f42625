"""Tests for database models and engine helpers."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.database import build_engine
from app.models import PasswordResetToken, Transaction, User


class TestUserModel:
    def test_table_and_columns(self):
        assert User.__tablename__ == "users"
        assert "userType" in User.__table__.columns
        assert User.__table__.columns["email"].unique

    def test_create_instance(self):
        record = User(email="ana@example.com", name="Ana", user_type="ngo", balance=Decimal("10"))
        assert record.user_type == "ngo"
        assert record.balance == Decimal("10")

    @pytest.mark.asyncio
    async def test_defaults_applied_on_insert(self, db_session):
        record = User(email="luis@example.com")
        db_session.add(record)
        await db_session.commit()

        loaded = await db_session.scalar(select(User).where(User.email == "luis@example.com"))
        assert isinstance(loaded.id, uuid.UUID)
        assert loaded.user_type == "client"
        assert loaded.balance == Decimal("0")
        assert loaded.created_at is not None


class TestTransactionModel:
    def test_columns(self):
        columns = Transaction.__table__.columns
        assert "userId" in columns
        assert columns["mp_payment_id"].unique
        assert columns["mp_payment_id"].nullable

    @pytest.mark.asyncio
    async def test_payment_id_unique(self, db_session, user):
        db_session.add(Transaction(user_id=user.id, amount=Decimal("5"), mp_payment_id="mp-1"))
        await db_session.commit()

        db_session.add(Transaction(user_id=user.id, amount=Decimal("5"), mp_payment_id="mp-1"))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_manual_entries_without_payment_id(self, db_session, user):
        db_session.add(Transaction(user_id=user.id, amount=Decimal("5"), type="withdrawal"))
        db_session.add(Transaction(user_id=user.id, amount=Decimal("7"), type="withdrawal"))
        await db_session.commit()
        rows = (await db_session.execute(select(Transaction))).scalars().all()
        assert len(rows) == 2


class TestPasswordResetTokenModel:
    def test_columns(self):
        columns = PasswordResetToken.__table__.columns
        assert columns["token_hash"].unique
        assert not columns["expires_at"].nullable


class TestEngine:
    @pytest.mark.asyncio
    async def test_sqlite_engine_has_no_pool_overrides(self):
        engine = build_engine("sqlite+aiosqlite:///:memory:")
        assert engine.url.drivername == "sqlite+aiosqlite"
        await engine.dispose()
