from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, Request

from staffauth.api.schemas import (
    Envelope,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    PrincipalResponse,
    RegisterRequest,
    RegisterResponse,
    ValidationResponse,
)
from staffauth.logging import get_logger
from staffauth.service.auth import extract_bearer
from staffauth.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    ValidationError,
)
from staffauth.service.results import AuthContext, AuthReason
from staffauth.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/auth")


def client_ip(request: Request) -> Optional[str]:
    """Caller address: first X-Forwarded-For hop, then X-Real-IP, then the peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else None


def _caller(request: Request) -> dict:
    return {"ip": client_ip(request), "user_agent": request.headers.get("User-Agent")}


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    runtime = get_runtime()
    ctx = await runtime.auth.authenticate(authorization, **_caller(request))
    if not ctx:
        raise AuthenticationError("invalid or missing token")
    return ctx


@router.get("/health", tags=["auth"])
async def health():
    """Liveness probe for the credential service."""
    return {"status": "ok", "service": "staffauth"}


@router.post("/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Register an employee and email a temporary password.

    Raises:
        409: If the email domain is not allowed or the account already exists
    """
    runtime = get_runtime()
    result = await runtime.registration.register(
        body.email,
        name=body.name,
        department=body.department,
        job_title=body.job_title,
    )
    if not result.success:
        raise ConflictError(result.message, detail={"reason": result.reason.value})
    return Envelope(
        status="ok",
        data=RegisterResponse(account_id=result.account_id, message=result.message),
    )


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request):
    """Authenticate with email and password.

    Unknown emails and wrong passwords produce the same 401 response.

    Raises:
        401: If credentials are invalid
        403: If the account is not active
    """
    runtime = get_runtime()
    result = await runtime.auth.login(body.email, body.password, **_caller(request))
    if not result.success:
        if result.reason == AuthReason.INACTIVE:
            raise ForbiddenError(result.message)
        raise AuthenticationError(result.message)
    return Envelope(
        status="ok",
        data=LoginResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            user_class=result.user_class.value,
            expires_in=result.expires_in,
        ),
    )


@router.post("/logout", response_model=Envelope, tags=["auth"])
async def logout(
    request: Request,
    body: Optional[LogoutRequest] = Body(None),
    authorization: Optional[str] = Header(None),
):
    """Revoke a token until its natural expiry.

    The token may be sent in the body or as an ``Authorization`` header.

    Raises:
        400: If the token is missing, unverifiable or already invalidated
    """
    runtime = get_runtime()
    token = (body.token if body and body.token else None) or authorization
    result = await runtime.auth.logout(token, **_caller(request))
    if not result.success:
        raise ValidationError(result.message, detail={"reason": result.reason.value})
    return Envelope(status="ok", data={"message": result.message})


@router.post("/validate", response_model=Envelope, tags=["auth"])
async def validate(request: Request, authorization: Optional[str] = Header(None)):
    """Validate a bearer access token.

    Raises:
        401: With ``details.reason`` naming the failed check
    """
    runtime = get_runtime()
    token = extract_bearer(authorization)
    result = await runtime.auth.validate(token, **_caller(request))
    if not result.valid:
        raise AuthenticationError(result.message, detail={"reason": result.reason.value})
    return Envelope(
        status="ok",
        data=ValidationResponse(
            valid=True,
            account_id=result.account_id,
            email=result.email,
            name=result.name,
            user_class=result.user_class.value,
            expires_at=result.expires_at,
        ),
    )


@router.get("/me", response_model=Envelope, tags=["auth"])
async def me(principal: AuthContext = Depends(get_principal)):
    return Envelope(
        status="ok",
        data=PrincipalResponse(
            account_id=principal.account_id,
            email=principal.email,
            user_class=principal.user_class.value,
            expires_at=principal.expires_at,
        ),
    )
