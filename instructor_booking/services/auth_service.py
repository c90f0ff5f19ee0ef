from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from instructor_booking.core.config import Settings, get_settings
from instructor_booking.core.errors import AuthError, ConflictError
from instructor_booking.schemas.auth import (
    AuthTokenResponse,
    CurrentUserResponse,
    LoginRequest,
    RegisterRequest,
)
from instructor_booking.services.security_utils import (
    TOKEN_PURPOSE_ACCESS,
    hash_password,
    sign_token,
    verify_password,
    verify_token,
)
from instructor_booking.services.user_store import (
    EmailAlreadyRegisteredError,
    UserStore,
    create_user_store,
    public_user,
)

logger = logging.getLogger(__name__)

_HTTP_BEARER = HTTPBearer(auto_error=False)


class AuthService:
    def __init__(
        self,
        settings: Settings | None = None,
        user_store: UserStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.user_store = user_store or create_user_store(self.settings)

    def register(self, payload: RegisterRequest) -> AuthTokenResponse:
        try:
            user_record = self.user_store.create_user(
                email=payload.email,
                full_name=payload.full_name,
                password_hash=hash_password(payload.password),
                timezone=payload.timezone,
            )
        except EmailAlreadyRegisteredError as exc:
            raise ConflictError(
                "An account with this email already exists.",
                code="email_already_registered",
            ) from exc
        logger.info("Instructor registered user_id=%s", user_record["_id"])
        return self._build_auth_token_response(user_record)

    def login(self, payload: LoginRequest) -> AuthTokenResponse:
        user_record = self.user_store.get_user_by_email(payload.email)
        if not user_record or not verify_password(
            payload.password,
            str(user_record.get("password_hash", "")),
        ):
            raise AuthError("Invalid email or password.", code="invalid_credentials")
        return self._build_auth_token_response(user_record)

    def get_current_user_from_token(self, access_token: str) -> CurrentUserResponse:
        claims = verify_token(
            access_token,
            purpose=TOKEN_PURPOSE_ACCESS,
            secret_key=self.settings.auth_secret_key,
        )
        if not claims:
            raise AuthError("Invalid or expired access token.", code="invalid_token")

        subject = claims.get("sub")
        user_record = self.user_store.get_user_by_id(subject) if isinstance(subject, str) else None
        if not user_record:
            raise AuthError("User not found for this access token.", code="invalid_token")
        return CurrentUserResponse(**public_user(user_record))

    def _build_auth_token_response(self, user_record: dict[str, Any]) -> AuthTokenResponse:
        current_user = CurrentUserResponse(**public_user(user_record))
        access_token, expires_in_seconds = sign_token(
            purpose=TOKEN_PURPOSE_ACCESS,
            claims={"sub": current_user.id, "role": current_user.role},
            secret_key=self.settings.auth_secret_key,
            ttl=timedelta(minutes=self.settings.auth_token_ttl_minutes),
        )
        return AuthTokenResponse(
            access_token=access_token,
            expires_in_seconds=expires_in_seconds,
            user=current_user,
        )


def require_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_HTTP_BEARER),
) -> CurrentUserResponse:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise AuthError("Authentication required.")
    return AuthService().get_current_user_from_token(credentials.credentials)
