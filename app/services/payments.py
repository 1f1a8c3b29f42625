"""Payment verification — credit a wallet once per approved gateway payment.

Flow:
  1. Already recorded payment id → no-op, report current balance
  2. Look up the payment on Mercado Pago
  3. external_reference "<type>_<userId>" must name the requesting user
  4. approved deposit → credit balance + insert transaction in one DB
     transaction; the unique mp_payment_id makes concurrent duplicates no-ops
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.mercadopago import MercadoPagoClient
from app.models import Transaction, User
from app.schemas import VerifyPaymentResponse
from app.services.cache import QueryCache

logger = logging.getLogger(__name__)

# Cached reads that a wallet credit makes stale
CREDIT_INVALIDATES = ("transactions", "users")


class PaymentVerificationError(Exception):
    """The payment cannot be credited to this user."""


class PaymentService:
    """Verifies gateway payments against one request's DB session."""

    def __init__(
        self,
        session: AsyncSession,
        gateway_factory: Callable[[], MercadoPagoClient] = MercadoPagoClient,
        cache: QueryCache | None = None,
    ):
        self.session = session
        self._gateway_factory = gateway_factory
        self.cache = cache

    async def verify(self, payment_id: str, user_id: str) -> VerifyPaymentResponse:
        payment_id = str(payment_id or "").strip()
        user_id = str(user_id or "").strip()
        if not payment_id or not user_id:
            raise PaymentVerificationError("paymentId and userId are required")
        try:
            user_uuid = uuid.UUID(user_id)
        except ValueError as e:
            raise PaymentVerificationError("Invalid userId") from e

        logger.info("Verifying payment | payment=%s | user=%s", payment_id, user_id)

        if await self._already_recorded(payment_id):
            logger.info("Payment already processed | payment=%s", payment_id)
            return VerifyPaymentResponse(
                success=True,
                newBalance=float(await self._balance(user_uuid)),
                message="Payment already processed",
            )

        payment = await self._gateway_factory().get_payment(payment_id)
        status = payment.get("status")
        ref_type, _, ref_user = str(payment.get("external_reference") or "").partition("_")
        if ref_user != user_id:
            raise PaymentVerificationError("Payment does not belong to this user")

        if status != "approved" or ref_type != "deposit":
            return VerifyPaymentResponse(success=False, message=f"Payment status: {status}")

        try:
            amount = Decimal(str(payment.get("transaction_amount")))
        except InvalidOperation as e:
            raise PaymentVerificationError("Payment has no valid amount") from e

        new_balance = await self._credit(user_uuid, amount, payment_id, status)
        if self.cache is not None:
            for table in CREDIT_INVALIDATES:
                self.cache.invalidate(table)

        return VerifyPaymentResponse(
            success=True,
            newBalance=float(new_balance),
            message="Payment processed successfully",
        )

    async def _already_recorded(self, payment_id: str) -> bool:
        found = await self.session.execute(
            select(Transaction.id).where(Transaction.mp_payment_id == payment_id).limit(1)
        )
        return found.first() is not None

    async def _balance(self, user_id: uuid.UUID) -> Decimal:
        balance = await self.session.scalar(select(User.balance).where(User.id == user_id))
        return balance or Decimal("0")

    async def _credit(self, user_id: uuid.UUID, amount: Decimal, payment_id: str, status: str) -> Decimal:
        try:
            user = (
                await self.session.execute(select(User).where(User.id == user_id).with_for_update())
            ).scalar_one_or_none()
            if user is None:
                raise PaymentVerificationError("User not found")

            self.session.add(Transaction(
                user_id=user_id,
                amount=amount,
                type="deposit",
                description="Depósito vía Mercado Pago",
                status="completed" if status == "approved" else status,
                mp_payment_id=payment_id,
            ))
            new_balance = (user.balance or Decimal("0")) + amount
            user.balance = new_balance
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("Payment recorded concurrently — skipping credit | payment=%s", payment_id)
            return await self._balance(user_id)
        except Exception:
            await self.session.rollback()
            raise

        logger.info("Payment credited | payment=%s | user=%s | amount=%s", payment_id, user_id, amount)
        return new_balance
