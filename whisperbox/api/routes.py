"""HTTP route definitions for the identity service."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..domain.account import SessionClaims
from ..domain.contracts import (
    AcceptMessagesInput,
    RegisterInput,
    SendMessageInput,
    SignInInput,
    VerifyInput,
)
from ..domain.outcomes import Failure, FailureKind, Outcome, Success
from ..domain.service import AccountService, SessionGrant
from ..security.throttle import Throttle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

STATUS_BY_KIND: dict[FailureKind, int] = {
    FailureKind.validation_error: status.HTTP_400_BAD_REQUEST,
    FailureKind.username_taken: status.HTTP_409_CONFLICT,
    FailureKind.email_taken: status.HTTP_409_CONFLICT,
    FailureKind.not_found: status.HTTP_404_NOT_FOUND,
    FailureKind.already_verified: status.HTTP_409_CONFLICT,
    FailureKind.code_expired: status.HTTP_400_BAD_REQUEST,
    FailureKind.code_mismatch: status.HTTP_400_BAD_REQUEST,
    FailureKind.invalid_credentials: status.HTTP_401_UNAUTHORIZED,
    FailureKind.not_verified: status.HTTP_403_FORBIDDEN,
    FailureKind.not_accepting: status.HTTP_403_FORBIDDEN,
    FailureKind.rate_limited: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureKind.dependency_failure: status.HTTP_502_BAD_GATEWAY,
}


class ApiFailure(Exception):
    """Carries a workflow ``Failure`` out of a handler or dependency."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class ApiResponse(BaseModel):
    """Envelope shared by every endpoint."""

    success: bool
    message: str


class AccountView(BaseModel):
    account_id: str
    username: str
    email: str
    is_verified: bool
    is_accepting_messages: bool


class RegisterResponse(ApiResponse):
    account: AccountView


class SessionView(BaseModel):
    account_id: str
    username: str
    is_verified: bool
    is_accepting_messages: bool

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "SessionView":
        return cls(
            account_id=claims.account_id,
            username=claims.username,
            is_verified=claims.is_verified,
            is_accepting_messages=claims.is_accepting_messages,
        )


class SignInResponse(ApiResponse):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: SessionView


class SessionResponse(ApiResponse):
    user: SessionView


class UsernameAvailabilityResponse(ApiResponse):
    available: bool


class AcceptStatusResponse(ApiResponse):
    is_accepting_messages: bool


class MessageView(BaseModel):
    content: str
    created_at: datetime


class MessagesResponse(ApiResponse):
    messages: list[MessageView]


def failure_response(failure: Failure) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(failure.kind, status.HTTP_400_BAD_REQUEST),
        content={"success": False, "message": failure.message, "error": failure.kind.value},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Render workflow failures and request validation errors in the shared envelope."""

    @app.exception_handler(ApiFailure)
    async def _api_failure(request: Request, exc: ApiFailure) -> JSONResponse:
        return failure_response(exc.failure)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {"loc": (), "msg": "invalid request"}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        detail = f"{location}: {first['msg']}" if location else first["msg"]
        return failure_response(Failure(FailureKind.validation_error, detail))


def _unwrap(outcome: Outcome) -> Success:
    if isinstance(outcome, Failure):
        raise ApiFailure(outcome)
    return outcome


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_throttle(request: Request) -> Throttle:
    throttle: Throttle = request.app.state.throttle
    return throttle


def session_token_from(request: Request) -> str | None:
    """Read the session token from the cookie, or an ``Authorization: Bearer`` header."""
    cookie_name = request.app.state.settings.session_cookie_name
    token = request.cookies.get(cookie_name)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def current_claims(request: Request, service: AccountService = Depends(get_service)) -> SessionClaims:
    claims = service.decode_session(session_token_from(request))
    if claims is None:
        raise ApiFailure(Failure(FailureKind.invalid_credentials, "Not authenticated"))
    return claims


def _throttle(throttle: Throttle, action: str, identifier: str) -> None:
    digest = hashlib.sha256(identifier.lower().encode("utf-8")).hexdigest()[:12]
    if not throttle.allow(f"{action}:{digest}"):
        raise ApiFailure(Failure(FailureKind.rate_limited, "Too many attempts, please try again later"))


def _set_session_cookie(request: Request, response: Response, grant: SessionGrant) -> None:
    response.set_cookie(
        request.app.state.settings.session_cookie_name,
        grant.token,
        max_age=grant.expires_in,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )


@router.post("/sign-up", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def sign_up(
    payload: RegisterInput,
    service: AccountService = Depends(get_service),
    throttle: Throttle = Depends(get_throttle),
) -> RegisterResponse:
    """Register an account, or re-issue the code for an unverified email."""
    _throttle(throttle, "sign-up", payload.email)
    outcome = _unwrap(service.register(payload))
    account = outcome.value
    return RegisterResponse(
        success=True,
        message=outcome.message,
        account=AccountView(
            account_id=account.account_id,
            username=account.username,
            email=account.email,
            is_verified=account.is_verified,
            is_accepting_messages=account.is_accepting_messages,
        ),
    )


@router.post("/verify-code", response_model=ApiResponse)
def verify_code(
    payload: VerifyInput,
    service: AccountService = Depends(get_service),
    throttle: Throttle = Depends(get_throttle),
) -> ApiResponse:
    _throttle(throttle, "verify", payload.identifier)
    outcome = _unwrap(service.verify(payload))
    return ApiResponse(success=True, message=outcome.message)


@router.post("/sign-in", response_model=SignInResponse)
def sign_in(
    request: Request,
    response: Response,
    payload: SignInInput,
    service: AccountService = Depends(get_service),
    throttle: Throttle = Depends(get_throttle),
) -> SignInResponse:
    """Exchange credentials for a session token, also set as an HttpOnly cookie."""
    _throttle(throttle, "sign-in", payload.identifier)
    outcome = _unwrap(service.sign_in(payload))
    grant: SessionGrant = outcome.value
    _set_session_cookie(request, response, grant)
    return SignInResponse(
        success=True,
        message=outcome.message,
        access_token=grant.token,
        expires_in=grant.expires_in,
        user=SessionView.from_claims(grant.claims),
    )


@router.post("/sign-out", response_model=ApiResponse)
def sign_out(request: Request, response: Response) -> ApiResponse:
    response.delete_cookie(request.app.state.settings.session_cookie_name)
    return ApiResponse(success=True, message="Signed out")


@router.get("/session", response_model=SessionResponse)
def get_session(claims: SessionClaims = Depends(current_claims)) -> SessionResponse:
    """Return the claims carried by the caller's token (as of issuance)."""
    return SessionResponse(success=True, message="ok", user=SessionView.from_claims(claims))


@router.get("/check-username-unique", response_model=UsernameAvailabilityResponse)
def check_username_unique(
    username: str = Query(..., min_length=3, max_length=20, pattern=r"^[a-zA-Z0-9]+$"),
    service: AccountService = Depends(get_service),
) -> UsernameAvailabilityResponse:
    outcome = _unwrap(service.is_username_available(username))
    return UsernameAvailabilityResponse(success=True, message=outcome.message, available=outcome.value)


@router.get("/accept-messages", response_model=AcceptStatusResponse)
def get_accept_messages(
    claims: SessionClaims = Depends(current_claims),
    service: AccountService = Depends(get_service),
) -> AcceptStatusResponse:
    outcome = _unwrap(service.get_accepting_status(claims.account_id))
    return AcceptStatusResponse(success=True, message=outcome.message, is_accepting_messages=outcome.value)


@router.post("/accept-messages", response_model=AcceptStatusResponse)
def set_accept_messages(
    request: Request,
    response: Response,
    payload: AcceptMessagesInput,
    claims: SessionClaims = Depends(current_claims),
    service: AccountService = Depends(get_service),
) -> AcceptStatusResponse:
    """Toggle the caller's flag and refresh the session cookie so its claims follow."""
    outcome = _unwrap(service.set_accepting_messages(claims.account_id, payload.accept_messages))
    account = outcome.value
    _set_session_cookie(request, response, service.issue_session(account))
    return AcceptStatusResponse(
        success=True,
        message=outcome.message,
        is_accepting_messages=account.is_accepting_messages,
    )


@router.post("/send-message", response_model=ApiResponse)
def send_message(
    payload: SendMessageInput,
    service: AccountService = Depends(get_service),
) -> ApiResponse:
    outcome = _unwrap(service.send_message(payload))
    return ApiResponse(success=True, message=outcome.message)


@router.get("/get-messages", response_model=MessagesResponse)
def get_messages(
    claims: SessionClaims = Depends(current_claims),
    service: AccountService = Depends(get_service),
) -> MessagesResponse:
    outcome = _unwrap(service.list_messages(claims.account_id))
    return MessagesResponse(
        success=True,
        message=outcome.message,
        messages=[MessageView(content=message.content, created_at=message.created_at) for message in outcome.value],
    )
