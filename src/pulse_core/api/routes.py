"""FastAPI routes serving aggregated insights reports."""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..accounts.store import AccountStore
from ..errors import ErrorKind, PlatformNotConnectedError
from ..insights.orchestrator import InsightsOrchestrator
from ..insights.singleflight import SingleFlight
from ..schemas.analytics import Account, InsightsReport, Platform, SourceError
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["reports"],
    dependencies=[Depends(require_api_key)],
)


ERROR_STATUS = {
    ErrorKind.TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTH_ERROR: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.NO_BUSINESS_ACCOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NETWORK_ERROR: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.API_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def get_orchestrator(request: Request) -> InsightsOrchestrator:
    return request.app.state.orchestrator


def get_account_store(request: Request) -> AccountStore:
    return request.app.state.account_store


def get_single_flight(request: Request) -> SingleFlight:
    return request.app.state.single_flight


async def _load_account(store: AccountStore, account_id: str) -> Account:
    # sqlite3 is blocking; keep it off the event loop
    account = await asyncio.to_thread(store.load, account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Account not found: {account_id}",
        )
    return account


def _error_response(error: SourceError) -> HTTPException:
    headers: Optional[dict[str, str]] = None
    if error.kind == ErrorKind.RATE_LIMIT and "retryAfter" in error.details:
        headers = {"Retry-After": str(int(error.details["retryAfter"]))}

    return HTTPException(
        status_code=ERROR_STATUS.get(error.kind, status.HTTP_502_BAD_GATEWAY),
        detail=error.model_dump(mode="json"),
        headers=headers,
    )


@router.get(
    "/reports/{account_id}",
    response_model=InsightsReport,
    summary="Aggregated insights for all connected platforms",
)
async def get_account_report(
    account_id: str,
    orchestrator: InsightsOrchestrator = Depends(get_orchestrator),
    store: AccountStore = Depends(get_account_store),
    single_flight: SingleFlight = Depends(get_single_flight),
) -> InsightsReport:
    """Return the unified report.

    Per-platform failures are reported inside ``errors``; the response is
    200 whenever the account exists.
    """
    account = await _load_account(store, account_id)

    report = await single_flight.run(
        f"{account.id}:overview",
        lambda: orchestrator.get_report(account),
    )

    if report.has_errors:
        logger.info(
            "Report for %s has errors: %s",
            account.id,
            ",".join(platform.value for platform in report.errors),
        )
    return report


@router.get(
    "/reports/{account_id}/platforms/{platform}",
    response_model=InsightsReport,
    summary="Insights for a single connected platform",
)
async def get_platform_report(
    account_id: str,
    platform: Platform,
    orchestrator: InsightsOrchestrator = Depends(get_orchestrator),
    store: AccountStore = Depends(get_account_store),
    single_flight: SingleFlight = Depends(get_single_flight),
) -> InsightsReport:
    """Return one platform's report, mapping its failure to an HTTP status.

    Returns 404 if the platform is not connected, 401 when the credential
    needs reconnecting, and 429 (with Retry-After) when rate limited.
    """
    account = await _load_account(store, account_id)

    try:
        report = await single_flight.run(
            f"{account.id}:{platform.value}",
            lambda: orchestrator.get_platform_report(account, platform),
        )
    except PlatformNotConnectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    error = report.errors.get(platform)
    if error is not None:
        raise _error_response(error)

    return report
