"""Password reset — single-use, one-hour tokens delivered by email.

Only the SHA-256 of a token is stored. Requesting a reset for an unknown
address succeeds silently so the endpoint cannot be used to enumerate
accounts.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable
from urllib.parse import quote

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.integrations.supabase_rest import BackendError, SupabaseClient
from app.models import PasswordResetToken, User
from app.schemas import SendEmailRequest
from app.services.email import EmailDeliveryError, send_transactional_email

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

EmailSender = Callable[[SendEmailRequest], Awaitable[dict]]


class PasswordResetError(Exception):
    """The reset request or confirmation was rejected."""


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token(nbytes: int = 32) -> str:
    """URL-safe random token (no padding)."""
    return secrets.token_urlsafe(nbytes)


def _utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _reset_email(link: str) -> tuple[str, str]:
    html = f"""
    <div style="font-family: Arial, Helvetica, sans-serif; color: #0B132B;">
      <h2 style="margin:0 0 8px">Restablecer tu contraseña</h2>
      <p>Hacé clic en el botón para establecer una nueva contraseña. Este enlace expira en 1 hora.</p>
      <p style="margin: 20px 0;"><a href="{link}" style="background:#5B7FFF;color:#fff;padding:10px 16px;border-radius:8px;text-decoration:none;font-weight:700;">Establecer nueva contraseña</a></p>
      <p>Si el botón no funciona, copiá y pegá este enlace en tu navegador:</p>
      <p style="font-size:12px;word-break:break-all;color:#334155;">{link}</p>
    </div>
    """
    text = f"Restablecé tu contraseña (el enlace expira en 1 hora): {link}"
    return html, text


class PasswordResetService:
    """Issues and redeems reset tokens for one request's DB session."""

    def __init__(
        self,
        session: AsyncSession,
        supabase: SupabaseClient | None = None,
        send_email: EmailSender | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session = session
        self.supabase = supabase
        self._send_email = send_email or (lambda req: send_transactional_email(req, supabase))
        self._now = now

    async def request_reset(self, email: str) -> str | None:
        """Issue a token for the account, if any. Returns the raw token or None."""
        email = (email or "").strip().lower()
        if not email:
            raise PasswordResetError("Email is required")

        user = (
            await self.session.execute(select(User).where(func.lower(User.email) == email))
        ).scalar_one_or_none()
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None

        token = generate_token()
        self.session.add(PasswordResetToken(
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=self._now() + timedelta(seconds=settings.password_reset_ttl_seconds),
        ))
        await self.session.commit()

        link = f"{settings.site_url.rstrip('/')}/reset-password?token={quote(token)}"
        html, text = _reset_email(link)
        try:
            await self._send_email(SendEmailRequest(
                to=email, subject="Restablecer contraseña - Taskora", html=html, text=text,
            ))
        except EmailDeliveryError as e:
            # The token stays valid; the user can request another email
            logger.error("Password reset email failed | user=%s | %s", user.id, str(e)[:200])

        logger.info("Password reset token issued | user=%s", user.id)
        return token

    async def confirm_reset(self, token: str, password: str):
        """Validate the token and set the new password. Raises PasswordResetError."""
        if not token or not password or len(password) < MIN_PASSWORD_LENGTH:
            raise PasswordResetError("Invalid payload")

        record = (
            await self.session.execute(
                select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_token(token))
            )
        ).scalar_one_or_none()
        if record is None:
            raise PasswordResetError("Invalid token")
        if record.used:
            raise PasswordResetError("Token already used")
        if _utc(record.expires_at) < self._now():
            raise PasswordResetError("Token expired")

        # Claim the token before touching the credential so two concurrent
        # confirmations cannot both succeed
        claimed = await self.session.execute(
            update(PasswordResetToken)
            .where(PasswordResetToken.id == record.id, PasswordResetToken.used == False)  # noqa: E712
            .values(used=True)
        )
        await self.session.commit()
        if claimed.rowcount != 1:
            raise PasswordResetError("Token already used")

        if self.supabase is None:
            await self._release(record.id)
            raise PasswordResetError("Auth service unavailable")
        try:
            await self.supabase.admin_update_user(str(record.user_id), {"password": password})
        except BackendError as e:
            await self._release(record.id)
            raise PasswordResetError(str(e) or "Password update failed") from e

        logger.info("Password reset completed | user=%s", record.user_id)

    async def _release(self, token_id):
        await self.session.execute(
            update(PasswordResetToken).where(PasswordResetToken.id == token_id).values(used=False)
        )
        await self.session.commit()
