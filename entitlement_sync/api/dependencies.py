"""
FastAPI Dependencies - Caller authentication and per-user sessions.

NO DICTIONARIES - All dependencies return typed objects.

The caller is whoever the verified Google ID token says they are. A path
user id that differs from the token's subject is rejected, so a caller can
only ever reach their own entitlements.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from entitlement_sync.exceptions import AuthenticationError, RemoteNetworkError
from entitlement_sync.models.domain import CallerIdentity
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.services.id_token_verifier import GoogleIdTokenVerifier
from entitlement_sync.services.session import SessionRegistry, UserSession

logger = get_logger(__name__)

# Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _app_state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        logger.error("app_state_unavailable", name=name)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return value


def get_token_verifier(request: Request) -> GoogleIdTokenVerifier:
    """Verifier built during application startup."""
    return _app_state(request, "token_verifier")  # type: ignore[return-value]


def get_session_registry(request: Request) -> SessionRegistry:
    """Registry built during application startup."""
    return _app_state(request, "session_registry")  # type: ignore[return-value]


async def get_caller_identity(
    user_id: str,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: GoogleIdTokenVerifier = Depends(get_token_verifier),
) -> CallerIdentity:
    """
    Verified caller, who must be the user named in the path.

    Accepts: Authorization: Bearer {google_id_token}

    Raises:
        HTTPException 401 if the token is missing or fails verification
        HTTPException 403 if the token belongs to a different user
        HTTPException 503 if Google's signing keys cannot be fetched
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authorization header required")

    try:
        subject = await verifier.verify(credentials.credentials)
    except AuthenticationError as exc:
        metrics.record_error(type(exc).__name__, "authenticate")
        raise _unauthorized(str(exc)) from exc
    except RemoteNetworkError as exc:
        metrics.record_error(type(exc).__name__, "authenticate")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity provider unavailable",
        ) from exc

    if subject != user_id:
        logger.warning("caller_user_mismatch", caller=subject, requested=user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token does not belong to this user",
        )
    return CallerIdentity(user_id=subject, id_token=credentials.credentials)


async def get_user_session(
    identity: CallerIdentity = Depends(get_caller_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> UserSession:
    """
    Session of the calling user.

    Usage:
        @router.get("/v1/entitlements/{user_id}")
        async def get_entitlements(session: UserSession = Depends(get_user_session)):
            ...
    """
    return await registry.session_for(identity)
