import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from volunteer_ops.checkin import CheckInSession
from volunteer_ops.config import Settings
from volunteer_ops.dashboard import DashboardSnapshot, DashboardView
from volunteer_ops.errors import (
    CheckInError,
    InvalidRequest,
    LocationUnavailable,
    NotFound,
    SubmissionError,
    TransientServiceError,
)
from volunteer_ops.geo import GeoPoint, distance_between
from volunteer_ops.models import Event, SignupCreate
from volunteer_ops.proximity import (
    LocationFix,
    LocationProvider,
    acquire_location,
    proximity_hint,
)
from volunteer_ops.selection import EventSelectionSync
from volunteer_ops.service import DataService, DataServiceError, InMemoryDataService

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckInRequest(BaseModel):
    signup_id: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    location_error: str | None = None


class EventSelection(BaseModel):
    event_id: str | None = None


def _http_error(exc: CheckInError) -> HTTPException:
    if isinstance(exc, InvalidRequest):
        status_code = 400
    elif isinstance(exc, NotFound):
        status_code = 404
    elif isinstance(exc, SubmissionError):
        status_code = 502
    elif isinstance(exc, TransientServiceError):
        status_code = 503
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=exc.message)


def _request_location(
    lat: float | None, lon: float | None, location_error: str | None
) -> LocationProvider:
    async def provider() -> GeoPoint:
        if location_error:
            raise LocationUnavailable(location_error)
        if lat is None or lon is None:
            raise LocationUnavailable("no location was provided")
        return GeoPoint(lat, lon)

    return provider


def _new_session(request: Request, position_id: str | None) -> CheckInSession:
    settings: Settings = request.app.state.settings
    return CheckInSession(
        request.app.state.service,
        position_id,
        retries=settings.lookup_retries,
        retry_delay=settings.lookup_retry_delay_s,
        sleep_fn=request.app.state.sleep_fn,
    )


def _proximity(
    session: CheckInSession, fix: LocationFix, threshold_m: float
) -> dict:
    position_location = session.position.location
    distance_m = None
    if fix.point is not None and position_location is not None:
        distance_m = round(distance_between(fix.point, position_location), 1)
    return {
        "hint": proximity_hint(fix.point, position_location, threshold_m),
        "distance_m": distance_m,
        "threshold_m": threshold_m,
        "location_error": fix.error,
    }


def _checkin_payload(session: CheckInSession, fix: LocationFix, settings: Settings) -> dict:
    return {
        "state": session.state,
        "position": session.position,
        "volunteers": session.volunteers,
        "proximity": _proximity(session, fix, settings.proximity_threshold_m),
    }


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/events")
async def list_events(request: Request) -> list[Event]:
    service: DataService = request.app.state.service
    try:
        return await service.list_events()
    except DataServiceError as exc:
        logger.warning("event list failed: %s", exc)
        raise _http_error(TransientServiceError(str(exc))) from exc


@router.get("/checkin")
async def get_checkin(
    request: Request,
    position: str | None = None,
    lat: float | None = Query(default=None, ge=-90, le=90),
    lon: float | None = Query(default=None, ge=-180, le=180),
    location_error: str | None = None,
) -> dict:
    settings: Settings = request.app.state.settings
    session = _new_session(request, position)
    try:
        fix = await acquire_location(
            _request_location(lat, lon, location_error),
            timeout=settings.geolocation_timeout_s,
        )
        await session.open()
        return _checkin_payload(session, fix, settings)
    except CheckInError as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@router.post("/checkin")
async def post_checkin(
    body: CheckInRequest, request: Request, position: str | None = None
) -> dict:
    settings: Settings = request.app.state.settings
    session = _new_session(request, position)
    try:
        if not position:
            raise InvalidRequest("Invalid QR code: No position ID")
        if not body.signup_id:
            raise InvalidRequest("Select your name to check in")

        fix = await acquire_location(
            _request_location(body.lat, body.lon, body.location_error),
            timeout=settings.geolocation_timeout_s,
        )
        await session.open()
        session.select(body.signup_id)
        checked_in = await session.submit()

        payload = _checkin_payload(session, fix, settings)
        payload["checked_in"] = checked_in
        return payload
    except CheckInError as exc:
        raise _http_error(exc) from exc
    finally:
        session.close()


@router.post("/signups", status_code=201)
async def create_signups(rows: list[SignupCreate], request: Request) -> dict:
    service: DataService = request.app.state.service
    if not rows:
        raise _http_error(
            InvalidRequest("No data to save. Please upload a CSV file first.")
        )
    try:
        created = await service.insert_signups(rows)
    except DataServiceError as exc:
        logger.warning("signup insert failed: %s", exc)
        raise _http_error(TransientServiceError(str(exc))) from exc
    return {
        "created": len(created),
        "signup_ids": [s.id for s in created],
    }


@router.get("/dashboard")
async def get_dashboard(
    request: Request, event_id: str | None = Query(default=None, alias="eventId")
) -> DashboardSnapshot:
    dashboard: DashboardView = request.app.state.dashboard
    try:
        return await dashboard.snapshot(event_id)
    except CheckInError as exc:
        raise _http_error(exc) from exc


@router.put("/dashboard/selection")
async def select_dashboard_event(body: EventSelection, request: Request) -> dict:
    dashboard: DashboardView = request.app.state.dashboard
    try:
        await dashboard.select_event(body.event_id)
    except CheckInError as exc:
        raise _http_error(exc) from exc
    return {
        "selected_event_id": dashboard.selection.selected,
        "query": dashboard.selection.query(),
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    dashboard: DashboardView = app.state.dashboard
    await dashboard.refresh()
    await dashboard.start()
    try:
        yield
    finally:
        await dashboard.stop()


def create_app(
    settings: Settings | None = None, service: DataService | None = None
) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service if service is not None else InMemoryDataService()

    app.state.now_fn = lambda: datetime.now(UTC)
    app.state.sleep_fn = asyncio.sleep

    # indirection so tests can swap now_fn/sleep_fn after creation
    app.state.dashboard = DashboardView(
        app.state.service,
        EventSelectionSync({}),
        settings=settings,
        now_fn=lambda: app.state.now_fn(),
        sleep_fn=lambda seconds: app.state.sleep_fn(seconds),
    )

    app.include_router(router)
    return app
