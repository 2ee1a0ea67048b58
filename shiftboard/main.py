from __future__ import annotations

import logging
import secrets
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal
from urllib.parse import quote

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shiftboard.config import Settings, configure_logging, get_settings
from shiftboard.db import get_db
from shiftboard.export import (
    LABELS,
    export_filename,
    iso_week_range,
    month_range,
    pivot_by_date,
    pivot_by_position,
    to_csv,
)
from shiftboard.feed import ChangeFeed
from shiftboard.models import AdminSession
from shiftboard.positions import POSITIONS, Position, get_position, position_label
from shiftboard.remote import SqlRemote
from shiftboard.security import CredentialCheck, credential_check_from_settings
from shiftboard.store import enforce_slot_capacity
from shiftboard.sync import InvalidInput, NotFound, RemoteError, ScheduleCache

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Shiftboard")

ADMIN_COOKIE_NAME = "admin_token"
NO_CACHE_PREFIXES = ("/api/", "/admin-", "/employee/", "/export/")


@app.middleware("http")
async def disable_cache_for_admin_and_api(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith(NO_CACHE_PREFIXES):
        response.headers["Cache-Control"] = "no-store, no-cache, max-age=0, must-revalidate"
        response.headers["Pragma"] = "no-cache"
    return response


class EmployeeOut(BaseModel):
    id: str
    name: str
    enabled: bool


class EmployeeCreatePayload(BaseModel):
    name: str


class AnnouncementOut(BaseModel):
    id: str
    text: str
    level: Literal["red", "orange", "green", "blue"]
    type: Literal["announcement", "info"]
    status: Literal["draft", "published"]
    published: bool
    created_at: str | None = None
    updated_at: str | None = None


class AnnouncementCreatePayload(BaseModel):
    text: str
    level: str | None = None
    type: str = "announcement"
    published: bool | None = None
    status: str | None = None


class AnnouncementTogglePayload(BaseModel):
    published: bool


class SlotPayload(BaseModel):
    names: list[str] = Field(default_factory=list)


class SlotOut(BaseModel):
    position_key: str
    work_date: date
    names: list[str]
    inserted: list[str] = Field(default_factory=list)
    deleted: int = 0


class PositionOut(BaseModel):
    key: str
    name: str


class MyAssignmentOut(BaseModel):
    position_key: str
    position_name: str
    coworkers: list[str]


class MyScheduleOut(BaseModel):
    name: str
    work_date: date
    assignments: list[MyAssignmentOut]
    dates: list[str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# cache

_CACHE: ScheduleCache | None = None
_CACHE_LOCK = threading.Lock()


def get_cache() -> ScheduleCache:
    global _CACHE
    with _CACHE_LOCK:
        if _CACHE is None:
            _CACHE = ScheduleCache(SqlRemote(ChangeFeed()))
        if not _CACHE.attached:
            try:
                _CACHE.attach()
            except RemoteError as exc:
                raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        return _CACHE


def reset_cache() -> None:
    global _CACHE
    with _CACHE_LOCK:
        if _CACHE is not None:
            _CACHE.detach()
        _CACHE = None


# admin sessions

def get_credential_check(settings: Settings = Depends(get_settings)) -> CredentialCheck | None:
    return credential_check_from_settings(settings)


def request_is_https(request: Request) -> bool:
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    if forwarded_proto:
        first_proto = forwarded_proto.split(",")[0].strip().lower()
        if first_proto:
            return first_proto == "https"
    return request.url.scheme == "https"


def set_admin_cookie(response: Response, request: Request, session_id: str, max_age: int) -> None:
    response.set_cookie(
        key=ADMIN_COOKIE_NAME,
        value=session_id,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=request_is_https(request),
        path="/",
    )


def clear_admin_cookie(response: Response, request: Request) -> None:
    response.delete_cookie(
        key=ADMIN_COOKIE_NAME,
        httponly=True,
        samesite="lax",
        secure=request_is_https(request),
        path="/",
    )


def create_admin_session(db: Session, hours: int) -> str:
    while True:
        session_id = secrets.token_urlsafe(32)
        if db.get(AdminSession, session_id) is None:
            break
    db.add(AdminSession(session_id=session_id, expires_at=utcnow() + timedelta(hours=hours)))
    db.commit()
    return session_id


def is_admin(request: Request, db: Session) -> bool:
    session_id = request.cookies.get(ADMIN_COOKIE_NAME)
    if not session_id:
        return False
    session = db.get(AdminSession, session_id)
    if session is None:
        return False
    expires_at = session.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= utcnow():
        db.delete(session)
        db.commit()
        return False
    return True


def require_admin(request: Request, db: Session = Depends(get_db)) -> None:
    if not is_admin(request, db):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin session required")


def raise_for_mutation_error(exc: Exception) -> None:
    if isinstance(exc, InvalidInput):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, NotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, RemoteError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    raise exc


@app.post("/admin-login")
def admin_login(
    request: Request,
    body: Any = Body(default=None),
    db: Session = Depends(get_db),
    check: CredentialCheck | None = Depends(get_credential_check),
    settings: Settings = Depends(get_settings),
):
    if check is None:
        return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Admin login is not configured")
    password = body.get("password") if isinstance(body, dict) else None
    if not isinstance(password, str) or not check.verify(password):
        logger.info("Rejected admin login from %s", request.client.host if request.client else "unknown")
        return error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    session_id = create_admin_session(db, settings.admin_session_hours)
    response = JSONResponse(content={"ok": True})
    set_admin_cookie(response, request, session_id, settings.admin_session_hours * 60 * 60)
    logger.info("Admin session started")
    return response


@app.post("/admin-logout")
def admin_logout(request: Request, db: Session = Depends(get_db)):
    session_id = request.cookies.get(ADMIN_COOKIE_NAME)
    if session_id:
        session = db.get(AdminSession, session_id)
        if session is not None:
            db.delete(session)
            db.commit()
    response = JSONResponse(content={"ok": True})
    clear_admin_cookie(response, request)
    return response


@app.post("/employee/delete")
def employee_delete(
    request: Request,
    body: Any = Body(default=None),
    db: Session = Depends(get_db),
    cache: ScheduleCache = Depends(get_cache),
):
    if not is_admin(request, db):
        return error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    if not isinstance(body, dict) or not body.get("id"):
        return error_response(status.HTTP_400_BAD_REQUEST, "id required")
    try:
        cache.remove_employee(body["id"])
    except InvalidInput as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    except NotFound as exc:
        return error_response(status.HTTP_404_NOT_FOUND, str(exc))
    except RemoteError as exc:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"ok": True}


@app.post("/employee/toggle")
def employee_toggle(
    request: Request,
    body: Any = Body(default=None),
    db: Session = Depends(get_db),
    cache: ScheduleCache = Depends(get_cache),
):
    if not is_admin(request, db):
        return error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    if not isinstance(body, dict) or not body.get("id") or not isinstance(body.get("enabled"), bool):
        return error_response(status.HTTP_400_BAD_REQUEST, "id/enabled required")
    try:
        cache.toggle_employee_enabled(body["id"], body["enabled"])
    except InvalidInput as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    except NotFound as exc:
        return error_response(status.HTTP_404_NOT_FOUND, str(exc))
    except RemoteError as exc:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return {"ok": True}


@app.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, bool | str]:
    return {"ok": True, "env": settings.environment}


@app.get("/api/positions", response_model=list[PositionOut])
def list_positions() -> list[PositionOut]:
    return [PositionOut(key=p.key, name=p.name) for p in POSITIONS]


@app.get("/api/employees", response_model=list[EmployeeOut])
def list_employees(cache: ScheduleCache = Depends(get_cache)) -> list[EmployeeOut]:
    return [EmployeeOut(id=e["id"], name=e["name"], enabled=e["enabled"]) for e in cache.roster()]


@app.post("/api/employees", response_model=EmployeeOut, status_code=status.HTTP_201_CREATED)
def create_employee(
    payload: EmployeeCreatePayload,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> EmployeeOut:
    try:
        row = cache.add_employee(payload.name)
    except (InvalidInput, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return EmployeeOut(id=row["id"], name=row["name"], enabled=row["enabled"])


@app.get("/api/announcements", response_model=list[AnnouncementOut])
def list_announcements(
    request: Request,
    db: Session = Depends(get_db),
    cache: ScheduleCache = Depends(get_cache),
) -> list[AnnouncementOut]:
    rows = cache.all_announcements() if is_admin(request, db) else cache.published_announcements()
    return [AnnouncementOut(**row) for row in rows]


@app.post("/api/announcements", response_model=AnnouncementOut, status_code=status.HTTP_201_CREATED)
def create_announcement(
    payload: AnnouncementCreatePayload,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> AnnouncementOut:
    try:
        row = cache.add_announcement(
            payload.text,
            level=payload.level,
            type=payload.type,
            published=payload.published,
            status=payload.status,
        )
    except (InvalidInput, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return AnnouncementOut(**row)


@app.patch("/api/announcements/{announcement_id}", response_model=AnnouncementOut)
def patch_announcement(
    announcement_id: str,
    patch: dict[str, Any] = Body(...),
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> AnnouncementOut:
    try:
        row = cache.update_announcement(announcement_id, patch)
    except (InvalidInput, NotFound, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return AnnouncementOut(**row)


@app.post("/api/announcements/{announcement_id}/publish", response_model=AnnouncementOut)
def publish_announcement(
    announcement_id: str,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> AnnouncementOut:
    try:
        row = cache.publish_announcement(announcement_id)
    except (InvalidInput, NotFound, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return AnnouncementOut(**row)


@app.post("/api/announcements/{announcement_id}/draft", response_model=AnnouncementOut)
def save_announcement_draft(
    announcement_id: str,
    patch: dict[str, Any] | None = Body(default=None),
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> AnnouncementOut:
    try:
        row = cache.save_announcement_draft(announcement_id, patch)
    except (InvalidInput, NotFound, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return AnnouncementOut(**row)


@app.post("/api/announcements/{announcement_id}/toggle", response_model=AnnouncementOut)
def toggle_announcement(
    announcement_id: str,
    payload: AnnouncementTogglePayload,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> AnnouncementOut:
    try:
        row = cache.toggle_announcement_publish(announcement_id, payload.published)
    except (InvalidInput, NotFound, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return AnnouncementOut(**row)


@app.delete("/api/announcements/{announcement_id}")
def delete_announcement(
    announcement_id: str,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
) -> dict[str, bool]:
    try:
        cache.remove_announcement(announcement_id)
    except (InvalidInput, NotFound, RemoteError) as exc:
        raise_for_mutation_error(exc)
    return {"ok": True}


@app.get("/api/schedule")
def get_schedule(
    start: date | None = None,
    end: date | None = None,
    cache: ScheduleCache = Depends(get_cache),
) -> dict[str, dict[str, list[str]]]:
    if start and end and end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    return cache.schedule_window(start, end)


@app.get("/api/schedule/{position_key}/{work_date}", response_model=SlotOut)
def get_slot(position_key: str, work_date: date, cache: ScheduleCache = Depends(get_cache)) -> SlotOut:
    return SlotOut(position_key=position_key, work_date=work_date, names=cache.get_assignees(position_key, work_date))


@app.put("/api/schedule/{position_key}/{work_date}", response_model=SlotOut)
def put_slot(
    position_key: str,
    work_date: date,
    payload: SlotPayload,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> SlotOut:
    if get_position(position_key) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown position")
    try:
        enforce_slot_capacity(payload.names, settings.slot_capacity)
        diff = cache.set_assignment(position_key, work_date, payload.names)
    except (InvalidInput, RemoteError) as exc:
        raise_for_mutation_error(exc)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return SlotOut(
        position_key=position_key,
        work_date=work_date,
        names=cache.get_assignees(position_key, work_date),
        inserted=diff.inserted,
        deleted=len(diff.deleted_ids),
    )


@app.get("/api/my-schedule", response_model=MyScheduleOut)
def my_schedule(
    name: str = Query(..., min_length=1),
    work_date: date | None = Query(default=None, alias="date"),
    cache: ScheduleCache = Depends(get_cache),
) -> MyScheduleOut:
    day = work_date or date.today()
    found, dates = cache.my_schedule(name, day)
    assignments = [
        MyAssignmentOut(
            position_key=a["position_key"],
            position_name=position_label(a["position_key"]),
            coworkers=a["coworkers"],
        )
        for a in found
    ]
    return MyScheduleOut(name=name.strip(), work_date=day, assignments=assignments, dates=dates)


def _export_positions(records: list[dict[str, str]]) -> list[Position]:
    known = {p.key for p in POSITIONS}
    extra = sorted({r["position_key"] for r in records} - known)
    return [*POSITIONS, *(Position(key, key) for key in extra)]


def build_export(
    cache: ScheduleCache,
    start: date,
    end: date,
    orientation: str,
    locale: str,
    label: str,
    weekday: bool = False,
) -> Response:
    labels = LABELS[locale]
    records = cache.export_records(start, end)
    try:
        if orientation == "position":
            grid = pivot_by_position(records, start, end, positions=_export_positions(records), labels=labels)
        else:
            grid = pivot_by_date(records, start, end, labels=labels, weekday=weekday, label_for=position_label)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    filename = export_filename(label, start, end)
    disposition = f"attachment; filename=\"{quote(filename)}\"; filename*=UTF-8''{quote(filename)}"
    return Response(
        content=to_csv(grid).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": disposition},
    )


@app.get("/export/csv")
def export_csv(
    start: date,
    end: date,
    orientation: Literal["date", "position"] = "date",
    locale: Literal["en", "zh"] | None = None,
    label: str | None = None,
    weekday: bool = False,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> Response:
    return build_export(
        cache, start, end, orientation, locale or settings.export_locale, label or settings.export_label, weekday
    )


@app.get("/export/csv/week")
def export_csv_week(
    ref: date | None = None,
    orientation: Literal["date", "position"] = "position",
    locale: Literal["en", "zh"] | None = None,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> Response:
    start, end = iso_week_range(ref or date.today())
    return build_export(cache, start, end, orientation, locale or settings.export_locale, settings.export_label)


@app.get("/export/csv/month")
def export_csv_month(
    ref: date | None = None,
    orientation: Literal["date", "position"] = "date",
    locale: Literal["en", "zh"] | None = None,
    _: None = Depends(require_admin),
    cache: ScheduleCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> Response:
    start, end = month_range(ref or date.today())
    return build_export(cache, start, end, orientation, locale or settings.export_locale, settings.export_label)
