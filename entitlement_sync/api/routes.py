"""
API Routes - FastAPI endpoints for entitlement reconciliation.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from structlog import get_logger

from entitlement_sync.api.dependencies import (
    get_caller_identity,
    get_session_registry,
    get_user_session,
)
from entitlement_sync.exceptions import (
    EntitlementSyncError,
    PurchaseConflictError,
    RecordStoreError,
    RemoteBackendError,
    RemoteNetworkError,
    UnknownProductError,
)
from entitlement_sync.models.api import (
    ContentResponse,
    EntitlementStateResponse,
    EntitlementStatusModel,
    InstanceIdRequest,
    PurchaseActionRequest,
    PurchasesUpdateRequest,
    ReconciliationResponse,
    RecordStatusModel,
)
from entitlement_sync.models.domain import CallerIdentity
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.services.product_catalog import ProductKind
from entitlement_sync.services.reconciliation import ReconciliationResult
from entitlement_sync.services.session import SessionRegistry, UserSession

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/entitlements", tags=["entitlements"])


def _http_error(exc: EntitlementSyncError, operation: str) -> HTTPException:
    """Translate a service error into the HTTP error the caller sees."""
    metrics.record_error(type(exc).__name__, operation)
    match exc:
        case PurchaseConflictError():
            status_code = status.HTTP_409_CONFLICT
        case UnknownProductError():
            status_code = status.HTTP_404_NOT_FOUND
        case RecordStoreError():
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        case RemoteNetworkError() | RemoteBackendError():
            status_code = status.HTTP_502_BAD_GATEWAY
        case _:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    logger.warning(
        "entitlement_request_failed",
        operation=operation,
        error_type=type(exc).__name__,
        error=str(exc),
        status_code=status_code,
    )
    return HTTPException(status_code=status_code, detail=str(exc))


def _reconciliation_response(
    session: UserSession, result: ReconciliationResult
) -> ReconciliationResponse:
    summary = result.summary
    return ReconciliationResponse(
        user_id=session.user_id,
        current_plan=summary.current_plan.value,
        records=[EntitlementStatusModel.from_record(record) for record in result.records],
        record_statuses=[
            RecordStatusModel.from_status(entry) for entry in summary.record_statuses
        ],
        transfer_required=list(summary.transfer_required),
        conversion_actions=[action.value for action in summary.conversion_actions],
        loading=session.engine.loading,
        acknowledged_tokens=list(result.acknowledged_tokens),
        failed_tokens=list(result.failed_tokens),
    )


@router.get("/{user_id}", response_model=EntitlementStateResponse)
async def get_entitlements(
    session: UserSession = Depends(get_user_session),
) -> EntitlementStateResponse:
    """
    Get the last reconciled entitlements and the derived plan.

    Read only: neither the backend of record nor the billing provider is contacted.
    """
    try:
        result = await session.engine.current_state()
    except EntitlementSyncError as exc:
        raise _http_error(exc, "get_entitlements") from exc
    # response_model drops the per-pass token lists
    return _reconciliation_response(session, result)


@router.get("/{user_id}/content/{kind}", response_model=ContentResponse)
async def get_entitled_content(
    kind: ProductKind,
    session: UserSession = Depends(get_user_session),
) -> ContentResponse:
    """
    Content fetched for the user's entitlements on the last reconciliation.

    404 when the user is not entitled to content of this kind.
    """
    try:
        content = await session.engine.entitled_content(kind)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "get_entitled_content") from exc
    if content is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {kind.value} content for this user",
        )
    return ContentResponse(user_id=session.user_id, kind=kind, url=content.url)


@router.post("/{user_id}/purchases", response_model=ReconciliationResponse)
async def update_purchases(
    request: PurchasesUpdateRequest,
    session: UserSession = Depends(get_user_session),
) -> ReconciliationResponse:
    """
    Device reports its current purchase list.

    Every purchase is registered with the backend of record and new ones are
    acknowledged. Registration failures of single purchases are logged and
    retried on the next report.
    """
    purchases = [purchase.to_domain() for purchase in request.purchases]
    try:
        result = await session.report_purchases(purchases)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "update_purchases") from exc
    return _reconciliation_response(session, result)


@router.post("/{user_id}/refresh", response_model=ReconciliationResponse)
async def refresh_entitlements(
    session: UserSession = Depends(get_user_session),
) -> ReconciliationResponse:
    """Manual refresh from the backend of record."""
    try:
        result = await session.engine.refresh()
    except EntitlementSyncError as exc:
        raise _http_error(exc, "refresh") from exc
    return _reconciliation_response(session, result)


@router.post("/{user_id}/register", response_model=ReconciliationResponse)
async def register_purchase(
    request: PurchaseActionRequest,
    session: UserSession = Depends(get_user_session),
) -> ReconciliationResponse:
    """
    Register one purchase with the backend of record.

    A purchase owned by another account is returned as a record needing
    transfer, not as an error.
    """
    try:
        result = await session.engine.register_purchase(request.product, request.purchase_token)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "register") from exc
    return _reconciliation_response(session, result)


@router.post("/{user_id}/transfer", response_model=ReconciliationResponse)
async def transfer_purchase(
    request: PurchaseActionRequest,
    session: UserSession = Depends(get_user_session),
) -> ReconciliationResponse:
    """Transfer a subscription owned by another account to the caller."""
    try:
        result = await session.engine.transfer(request.product, request.purchase_token)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "transfer") from exc
    return _reconciliation_response(session, result)


@router.post("/{user_id}/consume", response_model=ReconciliationResponse)
async def consume_purchase(
    request: PurchaseActionRequest,
    session: UserSession = Depends(get_user_session),
) -> ReconciliationResponse:
    """Consume a one-time product purchase."""
    try:
        result = await session.engine.consume(request.product, request.purchase_token)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "consume") from exc
    return _reconciliation_response(session, result)


@router.put("/{user_id}/instance-id", status_code=status.HTTP_204_NO_CONTENT)
async def register_instance_id(
    request: InstanceIdRequest,
    session: UserSession = Depends(get_user_session),
) -> None:
    """Register the device for push notifications."""
    try:
        await session.remote.register_instance_id(request.instance_id)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "register_instance_id") from exc


@router.delete("/{user_id}/instance-id", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_instance_id(
    instance_id: str = Query(..., min_length=1, max_length=4096),
    session: UserSession = Depends(get_user_session),
) -> None:
    """Unregister the device from push notifications."""
    try:
        await session.remote.unregister_instance_id(instance_id)
    except EntitlementSyncError as exc:
        raise _http_error(exc, "unregister_instance_id") from exc


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_local_user_data(
    identity: CallerIdentity = Depends(get_caller_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    """Sign-out: delete the stored entitlements of the user."""
    session = await registry.session_for(identity)
    try:
        await session.engine.delete_local_user_data()
    except EntitlementSyncError as exc:
        raise _http_error(exc, "delete_local_user_data") from exc
    await registry.close(identity.user_id)
