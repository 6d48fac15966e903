"""
auth/service.py -- Register / login / verify / reset flows.

AuthService is the only component with cross-cutting business rules. It is
constructed once per process with every collaborator injected (store, hasher,
session issuer, one-time token store, notifier) and holds no mutable state of
its own, so concurrent requests share it freely.

Error policy:
  - Notifier failures are the one thing recovered silently: logged, never
    raised. A mail outage must not fail registration or reveal which emails
    have accounts.
  - One-time token failures (not found / wrong purpose / expired) leave this
    module only as InvalidOrExpiredToken.
  - Login failures are always InvalidCredentials with the same message, and
    an unknown email still costs one bcrypt comparison [C1].
  - Everything else (HashingFailure, database errors) propagates unchanged.

Logging: user IDs only. Raw token values and password hashes are never
logged; emails are not logged for failed logins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AlreadyVerified,
    DuplicateEmail,
    InvalidCredentials,
    InvalidOrExpiredToken,
    TokenError,
    TokenInvalid,
    ValidationError,
)
from auth.models import Role, SessionPayload, TokenPurpose, User
from auth.notifier import Notifier, SmtpNotifier
from auth.one_time import OneTimeTokenStore
from auth.passwords import PasswordHasher, password_policy_violation
from auth.store import CredentialStore, normalize_email
from auth.tokens import ACCESS, SessionTokenIssuer
from core.config import Settings

if TYPE_CHECKING:
    from fastapi import BackgroundTasks

logger = logging.getLogger("authkeep.auth.service")


@dataclass
class AuthResult:
    """What a successful register or login hands back to the caller."""

    user: User
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        issuer: SessionTokenIssuer,
        one_time: OneTimeTokenStore,
        notifier: Notifier,
        verification_ttl: timedelta = timedelta(hours=24),
        reset_ttl: timedelta = timedelta(hours=1),
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.one_time = one_time
        self.notifier = notifier
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        *,
        role: str = Role.BUYER_RENTER.value,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> AuthResult:
        """Create an unverified account, send the verification link, and log the user in.

        Raises:
            ValidationError: weak password, malformed email, or unknown role.
            DuplicateEmail: the email is already registered (including a
                concurrent registration that won the insert).
        """
        _check_password(password)
        email = normalize_email(email)
        if "@" not in email:
            raise ValidationError("A valid email address is required.")
        try:
            role = Role(role).value
        except ValueError as exc:
            raise ValidationError(f"Unknown role '{role}'.") from exc

        if self.store.find_user_by_email(email) is not None:
            raise DuplicateEmail()

        hashed = self.hasher.hash(password)
        try:
            user = self.store.create_user(
                User(
                    email=email,
                    hashed_password=hashed,
                    role=role,
                    first_name=first_name,
                    last_name=last_name,
                    phone=phone,
                )
            )
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email.
            raise DuplicateEmail() from exc

        raw_token = self.one_time.issue(user.id, TokenPurpose.EMAIL_VERIFICATION, self.verification_ttl)
        self._notify(self.notifier.send_verification_link, user.email, raw_token, background_tasks)
        logger.info("Registered user_id=%s role=%s", user.id, user.role)
        return self._session(user, remember_me=False)

    def login(self, email: str, password: str, remember_me: bool = False) -> AuthResult:
        """Exchange email + password for session tokens.

        Unknown email, password-less account and wrong password all raise the
        same InvalidCredentials, and all three cost one bcrypt comparison.
        """
        user = self.store.find_user_by_email(email)
        if user is None or user.hashed_password is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.dummy_compare(password)
            logger.info("Login rejected (unknown account)")
            raise InvalidCredentials()
        if not self.hasher.compare(password, user.hashed_password):
            logger.info("Login rejected for user_id=%s (bad password)", user.id)
            raise InvalidCredentials()
        logger.info("Login succeeded for user_id=%s (remember_me=%s)", user.id, remember_me)
        return self._session(user, remember_me=remember_me)

    def verify_email(self, token: str) -> User:
        """Redeem an email verification token and mark its owner verified."""
        user_id = self._consume(token, TokenPurpose.EMAIL_VERIFICATION)
        user = self.store.update_user(user_id, verified=True)
        if user is None:
            # Owner deleted between issue and redeem; the token is gone either way.
            raise InvalidOrExpiredToken()
        logger.info("Email verified for user_id=%s", user_id)
        return user

    def forgot_password(self, email: str, background_tasks: BackgroundTasks | None = None) -> None:
        """Send a password reset link if the account exists; silently do nothing otherwise."""
        user = self.store.find_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown account")
            return
        raw_token = self.one_time.issue(user.id, TokenPurpose.PASSWORD_RESET, self.reset_ttl)
        self._notify(self.notifier.send_password_reset_link, user.email, raw_token, background_tasks)
        logger.info("Password reset issued for user_id=%s", user.id)

    def reset_password(self, token: str, new_password: str) -> None:
        """Redeem a reset token and replace the owner's password hash.

        The policy check and the hashing both run before the token is
        redeemed, so a rejected password or a bcrypt failure does not burn
        the link.
        """
        _check_password(new_password)
        hashed = self.hasher.hash(new_password)
        user_id = self._consume(token, TokenPurpose.PASSWORD_RESET)
        if self.store.update_user(user_id, hashed_password=hashed) is None:
            raise InvalidOrExpiredToken()
        logger.info("Password reset completed for user_id=%s", user_id)

    def resend_verification(self, user_id: int, background_tasks: BackgroundTasks | None = None) -> None:
        """Issue a fresh verification token (invalidating the previous one) and email it."""
        user = self.store.get_user(user_id)
        if user is None:
            raise InvalidCredentials()
        if user.verified:
            raise AlreadyVerified()
        raw_token = self.one_time.issue(user.id, TokenPurpose.EMAIL_VERIFICATION, self.verification_ttl)
        self._notify(self.notifier.send_verification_link, user.email, raw_token, background_tasks)
        logger.info("Verification re-sent for user_id=%s", user.id)

    def authenticate(self, access_token: str) -> User:
        """Resolve a bearer access token to its user.

        Raises TokenExpired / TokenInvalid. Refresh tokens are rejected here.
        """
        payload = self.issuer.verify(access_token)
        if payload.token_type != ACCESS:
            raise TokenInvalid()
        user = self.store.get_user(payload.user_id)
        if user is None:
            raise TokenInvalid()
        return user

    def purge_expired_tokens(self) -> int:
        return self.one_time.purge_expired()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _session(self, user: User, remember_me: bool) -> AuthResult:
        payload = SessionPayload(user_id=user.id, email=user.email)
        return AuthResult(
            user=user,
            access_token=self.issuer.issue_access_token(payload, extended_lifetime=remember_me),
            refresh_token=self.issuer.issue_refresh_token(payload),
            expires_in=self.issuer.access_ttl(remember_me),
        )

    def _consume(self, token: str, purpose: TokenPurpose) -> int:
        try:
            return self.one_time.consume(token, purpose)
        except TokenError as exc:
            logger.info("Rejected %s token: %s", purpose.value, type(exc).__name__)
            raise InvalidOrExpiredToken() from exc

    def _notify(
        self,
        send: Callable[[str, str], None],
        email: str,
        token: str,
        background_tasks: BackgroundTasks | None,
    ) -> None:
        if background_tasks is not None:
            background_tasks.add_task(_deliver, send, email, token)
        else:
            _deliver(send, email, token)


def build_auth_service(settings: Settings, store: CredentialStore, notifier: Notifier | None = None) -> AuthService:
    """Wire the production AuthService from Settings.

    notifier defaults to SmtpNotifier; tests pass a recording fake instead.
    """
    if notifier is None:
        notifier = SmtpNotifier(
            client_url=settings.client_url,
            sender=settings.mail_sender,
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    return AuthService(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        issuer=SessionTokenIssuer(
            secret_key=settings.secret_key,
            access_ttl=settings.access_token_expire_seconds,
            extended_ttl=settings.remember_me_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
        ),
        one_time=OneTimeTokenStore(store),
        notifier=notifier,
        verification_ttl=timedelta(seconds=settings.verification_token_ttl_seconds),
        reset_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
    )


def _deliver(send: Callable[[str, str], None], email: str, token: str) -> None:
    """Run one notifier call; log and swallow any failure (best-effort delivery)."""
    try:
        send(email, token)
    except Exception:
        logger.warning("Notification delivery failed (%s)", getattr(send, "__name__", "send"), exc_info=True)


def _check_password(password: str) -> None:
    reason = password_policy_violation(password)
    if reason is not None:
        raise ValidationError(reason)
