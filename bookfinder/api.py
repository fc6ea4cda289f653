import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Literal, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from bookfinder.book import BookEntry, BookRecord, ReadingStatus, User
from bookfinder.catalog import normalize_many
from bookfinder.config import settings
from bookfinder.database import get_db_connection
from bookfinder.errors import (
    AuthError,
    AuthErrorReason,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from bookfinder.library import LibraryStore
from bookfinder.notifications import NotificationChannel
from bookfinder.services.cache_manager import CacheManager
from bookfinder.services.google_books_service import GoogleBooksService
from bookfinder.services.http_client import cleanup_http_client, get_http_client
from bookfinder.services.image_proxy import (
    PLACEHOLDER_CONTENT_TYPE,
    PLACEHOLDER_COVER,
    ImageProxy,
)
from bookfinder.session import SessionManager, UserStore
from bookfinder.stats import Stats, compute

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Everything the HTTP layer talks to, built once per application."""

    users: UserStore
    session: SessionManager
    library: LibraryStore
    notifications: NotificationChannel
    catalog: GoogleBooksService
    image_proxy: ImageProxy
    cache: CacheManager
    db_file: Optional[str] = None

    def current_stats(self) -> Stats:
        user = self.session.require_user()
        return compute(self.library.list_by_owner(user.email))


# --- Models ---
class RegisterModel(BaseModel):
    name: str = ""
    email: str
    password: str


class LoginModel(BaseModel):
    email: str
    password: str


class ProfileUpdateModel(BaseModel):
    name: str
    email: str
    password: str | None = None
    confirm_password: str | None = None


class UserModel(BaseModel):
    id: int
    name: str
    email: str
    created_at: str


class BookRecordModel(BaseModel):
    external_id: str
    title: str
    authors: List[str]
    thumbnail: str | None = None
    proxied_thumbnail: str | None = None
    description: str
    published_date: str = ""
    page_count: int = 0
    isbn: str | None = None


class BookCreateModel(BaseModel):
    external_id: str = Field(min_length=1, description="Catalog volume id")
    title: str | None = None
    authors: List[str] | None = None
    thumbnail: str | None = None
    description: str | None = None
    published_date: str | None = None
    page_count: int | None = None
    isbn: str | None = None
    status: ReadingStatus = ReadingStatus.TO_READ


class BookUpdateModel(BaseModel):
    # Only the mutable fields are accepted
    model_config = ConfigDict(extra="forbid")

    status: ReadingStatus | None = None
    notes: str | None = None
    favourite: bool | None = None


class BookEntryModel(BaseModel):
    id: int
    external_id: str
    owner_email: str
    title: str
    authors: List[str]
    thumbnail: str | None = None
    description: str
    published_date: str
    page_count: int
    status: ReadingStatus
    favourite: bool
    notes: str
    added_at: str


class StatsModel(BaseModel):
    finished: int
    reading: int
    total: int


class EntryResultModel(BaseModel):
    entry: BookEntryModel
    stats: StatsModel


class RemoveResultModel(BaseModel):
    message: str
    stats: StatsModel


class NotificationModel(BaseModel):
    id: int
    message: str
    level: str


# --- Helpers ---
def _services(request: Request) -> AppServices:
    return request.app.state.services


def require_login(request: Request) -> User:
    """Dependency: the library is only reachable with a live session."""
    user = _services(request).session.current_user()
    if user is None:
        raise HTTPException(status_code=401, detail="Login required.")
    return user


def _entry_model(entry: BookEntry) -> BookEntryModel:
    return BookEntryModel(**entry.to_dict())


def _stats_model(stats: Stats) -> StatsModel:
    return StatsModel(**stats.to_dict())


def _record_model(record: BookRecord) -> BookRecordModel:
    proxied = f"/proxy-image?url={quote(record.thumbnail, safe='')}" if record.thumbnail else None
    return BookRecordModel(**record.to_dict(), proxied_thumbnail=proxied)


def _error_response(services: AppServices, status_code: int, message: str) -> JSONResponse:
    services.notifications.post(message, level="error")
    return JSONResponse(status_code=status_code, content={"detail": message})


def create_app(
    db_file: Optional[str] = None,
    session_file: Optional[str] = None,
    catalog: Optional[GoogleBooksService] = None,
    image_proxy: Optional[ImageProxy] = None,
    notifications: Optional[NotificationChannel] = None,
) -> FastAPI:
    """Build the application and its services.

    The session is restored in the lifespan startup hook and torn down on
    shutdown, together with the shared HTTP client.
    """
    db_file = db_file or settings.database_file
    users = UserStore(db_file)
    session = SessionManager(users, session_file)
    cache = image_proxy.cache if image_proxy else CacheManager()
    services = AppServices(
        users=users,
        session=session,
        library=LibraryStore(session, db_file),
        notifications=notifications or NotificationChannel(),
        catalog=catalog or GoogleBooksService(),
        image_proxy=image_proxy or ImageProxy(cache),
        cache=cache,
        db_file=db_file,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Restore the persisted session and open the shared HTTP pool
        services.session.init()
        await get_http_client()
        try:
            yield
        finally:
            await cleanup_http_client()
            services.session.teardown()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error handling ---
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error_response(services, 400, exc.message)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        status_code = 409 if exc.reason is AuthErrorReason.ALREADY_REGISTERED else 401
        return _error_response(services, status_code, exc.message)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(services, 404, exc.message)

    # --- Health check ---
    @app.get("/health")
    def health():
        """Lightweight health check with a quick database round trip."""
        db_ok = True
        try:
            conn = get_db_connection(services.db_file)
            conn.execute("SELECT 1")
            conn.close()
        except sqlite3.Error:
            logger.exception("Health check database probe failed")
            db_ok = False
        return {
            "status": "healthy" if db_ok else "degraded",
            "version": settings.app_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": db_ok,
            "services": {
                "google_books": services.catalog.is_available(),
                "cache": services.cache.get_stats(),
            },
        }

    # --- Authentication ---
    @app.post("/auth/register", response_model=UserModel)
    def register(payload: RegisterModel):
        user = services.session.register(payload.name, payload.email, payload.password)
        services.notifications.post("Registration successful! Welcome to Book Finder.")
        return UserModel(**user.to_dict())

    @app.post("/auth/login", response_model=UserModel)
    def login(payload: LoginModel):
        user = services.session.login(payload.email, payload.password)
        services.notifications.post("Login successful! Welcome back.")
        return UserModel(**user.to_dict())

    @app.post("/auth/logout")
    def logout():
        services.session.logout()
        services.notifications.post("Logged out successfully.")
        return {"message": "Logged out successfully."}

    @app.get("/auth/me", response_model=UserModel)
    def me(user: User = Depends(require_login)):
        return UserModel(**user.to_dict())

    @app.patch("/auth/me", response_model=UserModel, dependencies=[Depends(require_login)])
    def update_profile(payload: ProfileUpdateModel):
        user = services.session.update_profile(
            payload.name, payload.email, payload.password, payload.confirm_password
        )
        services.notifications.post("Profile updated successfully.")
        return UserModel(**user.to_dict())

    # --- Library ---
    @app.get("/books", response_model=List[BookEntryModel])
    def list_books(
        user: User = Depends(require_login),
        status: Optional[ReadingStatus] = Query(None, description="to-read | reading | finished"),
        favourite: Optional[bool] = Query(None),
        sort_by: Literal["added_at", "title"] = Query("added_at"),
        order: Literal["asc", "desc"] = Query("asc"),
        limit: Optional[int] = Query(None, ge=1, le=500),
    ):
        """List the logged-in user's books."""
        entries = services.library.list_by_owner(
            user.email,
            status=status,
            favourite=favourite,
            sort_by=sort_by,
            descending=order == "desc",
            limit=limit,
        )
        return [_entry_model(e) for e in entries]

    @app.post("/books", response_model=EntryResultModel)
    def add_book(payload: BookCreateModel, user: User = Depends(require_login)):
        """Add a catalog book to the library. The same book may be added more than once."""
        record = BookRecord.from_dict(payload.model_dump(exclude={"status"}))
        entry = services.library.add(user.email, record, payload.status)
        stats = services.current_stats()
        if payload.status is ReadingStatus.TO_READ:
            services.notifications.post(f'"{entry.title}" added to your library!')
        else:
            services.notifications.post(f'"{entry.title}" added to {payload.status.label}!')
        return EntryResultModel(entry=_entry_model(entry), stats=_stats_model(stats))

    @app.get("/books/{entry_id}", response_model=BookEntryModel, dependencies=[Depends(require_login)])
    def get_book(entry_id: int):
        return _entry_model(services.library.get(entry_id))

    @app.patch("/books/{entry_id}", response_model=EntryResultModel, dependencies=[Depends(require_login)])
    def update_book(entry_id: int, payload: BookUpdateModel):
        """Change status, notes or favourite flag."""
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        entry = services.library.update(entry_id, **changes)
        stats = services.current_stats()
        if set(changes) == {"favourite"}:
            services.notifications.post(
                "Added to favourites! ⭐" if entry.favourite else "Removed from favourites"
            )
        else:
            services.notifications.post("Book updated successfully!")
        return EntryResultModel(entry=_entry_model(entry), stats=_stats_model(stats))

    @app.delete("/books/{entry_id}", response_model=RemoveResultModel, dependencies=[Depends(require_login)])
    def delete_book(entry_id: int):
        entry = services.library.get(entry_id)
        services.library.remove(entry_id)
        stats = services.current_stats()
        message = f'"{entry.title}" removed from library'
        services.notifications.post(message)
        return RemoveResultModel(message=message, stats=_stats_model(stats))

    @app.get("/stats", response_model=StatsModel, dependencies=[Depends(require_login)])
    def get_stats():
        return _stats_model(services.current_stats())

    # --- Catalog ---
    @app.get("/catalog/search", response_model=List[BookRecordModel])
    async def search_catalog(q: str = Query(..., description="Title, author, ISBN or keyword")):
        if not services.catalog.is_available():
            services.notifications.post("Catalog search is disabled.", level="error")
            return []
        try:
            items = await services.catalog.search(q)
        except ExternalServiceError as e:
            logger.warning(f"Catalog search for '{q}' failed: {e}")
            services.notifications.post("Failed to search books. Please try again.", level="error")
            return []
        return [_record_model(r) for r in normalize_many(items)]

    @app.get("/catalog/featured", response_model=List[BookRecordModel])
    async def featured_books():
        return await _home_shelf(services.catalog.featured)

    @app.get("/catalog/trending", response_model=List[BookRecordModel])
    async def trending_books():
        return await _home_shelf(services.catalog.trending)

    async def _home_shelf(fetch) -> List[BookRecordModel]:
        if not services.catalog.is_available():
            return []
        try:
            items = await fetch()
        except ExternalServiceError as e:
            logger.warning(f"Loading home shelf failed: {e}")
            return []
        return [_record_model(r) for r in normalize_many(items)]

    # --- Cover relay ---
    @app.get("/proxy-image")
    async def proxy_image(url: Optional[str] = Query(None)):
        """Relay a cover image; falls back to a placeholder without notifying."""
        if not url:
            raise HTTPException(status_code=400, detail="URL parameter is required")
        try:
            content, content_type = await services.image_proxy.fetch(url)
        except (ExternalServiceError, ValidationError) as e:
            logger.info(f"Serving placeholder cover for {url}: {e}")
            return Response(
                content=PLACEHOLDER_COVER,
                media_type=PLACEHOLDER_CONTENT_TYPE,
                headers={"Cache-Control": "public, max-age=3600"},
            )
        return Response(
            content=content,
            media_type=content_type,
            headers={"Cache-Control": f"public, max-age={services.image_proxy.cache_ttl}"},
        )

    # --- Notifications ---
    @app.get("/notifications/current", response_model=Optional[NotificationModel])
    def current_notification():
        notification = services.notifications.current()
        return NotificationModel(**notification.to_dict()) if notification else None

    @app.delete("/notifications/current")
    def dismiss_notification(notification_id: Optional[int] = Query(None, alias="id")):
        return {"dismissed": services.notifications.dismiss(notification_id)}

    return app


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

app = create_app()
