"""
auth/tokens.py -- Signed, stateless session tokens (JWT).

Security design decisions:
  JWT: python-jose with HS256, signed with Settings.secret_key. Tokens carry
       sub/user_id, email, type ("access" or "refresh"), iat and exp. Nothing
       is stored server side; a token is valid exactly as long as its signature
       checks out and exp is in the future.

  Expiry: jose's own exp check reads the wall clock, so it is disabled and
       verify() compares exp against the injected clock instead. Expired means
       now >= exp.

  Lifetimes: default access TTL, "remember me" TTL and refresh TTL all come
       from core.config.Settings -- no business durations are hardcoded here.

  Refresh tokens share the payload shape but carry type="refresh". The request
       dependency only accepts type="access", so a stolen refresh token cannot
       be replayed as a bearer credential.

verify() raises (TokenExpired / TokenInvalid) instead of returning None so the
caller can tell an expired session from a forged one when it logs.
"""

from __future__ import annotations

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import SessionPayload
from core.clock import Clock, utcnow

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"


class SessionTokenIssuer:
    """Creates and verifies signed identity tokens.

    Holds only immutable configuration, so one instance is safe to share
    across every request thread.
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int,
        extended_ttl: int,
        refresh_ttl: int,
        clock: Clock = utcnow,
    ) -> None:
        if extended_ttl <= access_ttl:
            raise ValueError("extended_ttl must be longer than access_ttl")
        self._secret_key = secret_key
        self._access_ttl = access_ttl
        self._extended_ttl = extended_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    def access_ttl(self, extended_lifetime: bool = False) -> int:
        """Return the access token lifetime in seconds."""
        return self._extended_ttl if extended_lifetime else self._access_ttl

    def issue_access_token(self, payload: SessionPayload, extended_lifetime: bool = False) -> str:
        """Sign an access token; extended_lifetime selects the remember-me TTL."""
        return self._encode(payload, ACCESS, self.access_ttl(extended_lifetime))

    def issue_refresh_token(self, payload: SessionPayload) -> str:
        """Sign a refresh token. Its TTL is fixed regardless of remember-me."""
        return self._encode(payload, REFRESH, self._refresh_ttl)

    def verify(self, token: str) -> SessionPayload:
        """Validate signature, structure and expiry; return the decoded payload.

        Raises:
            TokenExpired: signature is valid but now >= exp.
            TokenInvalid: bad signature, malformed token, or missing claims.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalid() from exc

        try:
            user_id = int(claims["user_id"])
            email = str(claims["email"])
            token_type = str(claims["type"])
            issued_at = int(claims["iat"])
            expires_at = int(claims["exp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc
        if token_type not in (ACCESS, REFRESH):
            raise TokenInvalid()

        if self._clock().timestamp() >= expires_at:
            raise TokenExpired()

        return SessionPayload(
            user_id=user_id,
            email=email,
            token_type=token_type,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def _encode(self, payload: SessionPayload, token_type: str, ttl: int) -> str:
        issued_at = int(self._clock().timestamp())
        claims = {
            "sub": str(payload.user_id),
            "user_id": payload.user_id,
            "email": payload.email,
            "type": token_type,
            "iat": issued_at,
            "exp": issued_at + ttl,
        }
        return jwt.encode(claims, self._secret_key, algorithm=_ALGORITHM)


def set_auth_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    max_age: matches the token lifetime so both expire together.
    """
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
