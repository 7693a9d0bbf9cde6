"""FastAPI application exposing the auth flows over HTTP."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from anonlink.domain.errors import (
    AnonlinkError,
    ConflictError,
    IdentityNotFoundError,
    InvalidCredentialsError,
    LinkInFlightError,
    LinkRequestNotFoundError,
    MigrationFailureError,
    SessionExpiredError,
    TransientError,
    ValidationError,
)
from anonlink.domain.model import LinkState

from .schema import (
    AuthOut,
    BeginLinkBody,
    CommitLinkBody,
    ErrorOut,
    IdentityOut,
    LinkRequestOut,
    MagicLinkBody,
    SessionOut,
    SignInBody,
    SignUpBody,
    VerifyMagicLinkBody,
)

if TYPE_CHECKING:
    from anonlink.domain.auth_flow import AuthFlowOrchestrator, AuthResult

log = getLogger(__name__)

RETRY_AFTER_SECONDS = "1"


def status_for(exc: AnonlinkError) -> int:
    match exc:
        case InvalidCredentialsError() | SessionExpiredError():
            return status.HTTP_401_UNAUTHORIZED
        case IdentityNotFoundError() | LinkRequestNotFoundError():
            return status.HTTP_404_NOT_FOUND
        case ValidationError():
            return status.HTTP_400_BAD_REQUEST
        case ConflictError():
            return status.HTTP_409_CONFLICT
        case TransientError():
            return status.HTTP_503_SERVICE_UNAVAILABLE
        case MigrationFailureError():
            return status.HTTP_500_INTERNAL_SERVER_ERROR
        case _:
            return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(exc: AnonlinkError) -> JSONResponse:
    body = ErrorOut(
        detail=exc.user_message,
        code=exc.code,
        retryable=exc.retryable,
        anonymous_data_intact=exc.anonymous_data_intact,
    )
    headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
    return JSONResponse(
        status_code=status_for(exc),
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


def _auth_out(result: AuthResult) -> AuthOut:
    return AuthOut(
        identity=IdentityOut.from_domain(result.identity),
        session=SessionOut.from_domain(result.session),
        link_request_id=result.link_request_id,
    )


def bearer_token(authorization: Annotated[str | None, Header()] = None) -> str:
    if authorization is None:
        raise SessionExpiredError
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise SessionExpiredError
    return token.strip()


def create_app(orchestrator: AuthFlowOrchestrator) -> FastAPI:
    app = FastAPI(title="anonlink", version="0.1.0")
    app.state.orchestrator = orchestrator

    @app.exception_handler(AnonlinkError)
    async def anonlink_error_handler(request: Request, exc: AnonlinkError) -> JSONResponse:
        level = log.warning if status_for(exc) >= 500 else log.info  # noqa: PLR2004
        level("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        log.info("%s %s rejected: %s", request.method, request.url.path, exc.errors())
        body = ErrorOut(detail="Invalid request.", code="validation_error")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/identity/anonymous", status_code=status.HTTP_201_CREATED)
    def create_anonymous() -> AuthOut:
        return _auth_out(orchestrator.create_anonymous())

    @app.get("/identity/session")
    def get_session(token: Annotated[str, Depends(bearer_token)]) -> AuthOut:
        return _auth_out(orchestrator.get_session(token))

    @app.post("/identity/signup")
    def sign_up(body: SignUpBody) -> AuthOut:
        result = orchestrator.sign_up(
            body.credential.to_input(),
            display_name=body.display_name,
            current_session_token=body.current_session_token,
            idempotency_key=body.idempotency_key,
        )
        return _auth_out(result)

    @app.post("/identity/signin")
    def sign_in(body: SignInBody) -> AuthOut:
        result = orchestrator.sign_in(
            body.credential.to_input(),
            current_session_token=body.current_session_token,
            idempotency_key=body.idempotency_key,
        )
        return _auth_out(result)

    @app.post("/identity/signout", status_code=status.HTTP_204_NO_CONTENT)
    def sign_out(token: Annotated[str, Depends(bearer_token)]) -> Response:
        orchestrator.sign_out(token)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/identity/link/begin")
    def begin_link(
        body: BeginLinkBody, token: Annotated[str, Depends(bearer_token)]
    ) -> LinkRequestOut:
        request = orchestrator.begin_link(
            token,
            body.source_identity_id,
            body.target_credential.to_input(),
            body.idempotency_key,
            display_name=body.display_name,
        )
        if request.state is LinkState.CONFLICT:
            raise LinkInFlightError(body.source_identity_id)
        return LinkRequestOut.from_domain(request)

    @app.post("/identity/link/commit")
    def commit_link(
        body: CommitLinkBody, token: Annotated[str, Depends(bearer_token)]
    ) -> AuthOut:
        return _auth_out(orchestrator.commit_link(token, body.link_request_id))

    @app.get("/identity/link/{link_request_id}")
    def get_link_request(
        link_request_id: UUID, token: Annotated[str, Depends(bearer_token)]
    ) -> LinkRequestOut:
        return LinkRequestOut.from_domain(orchestrator.get_link_request(token, link_request_id))

    @app.post("/identity/magic-link", status_code=status.HTTP_202_ACCEPTED)
    def request_magic_link(body: MagicLinkBody) -> Response:
        orchestrator.request_magic_link(body.email)
        return Response(status_code=status.HTTP_202_ACCEPTED)

    @app.post("/identity/magic-link/verify")
    def verify_magic_link(body: VerifyMagicLinkBody) -> AuthOut:
        result = orchestrator.verify_magic_link(
            body.token,
            current_session_token=body.current_session_token,
            display_name=body.display_name,
        )
        return _auth_out(result)

    return app
