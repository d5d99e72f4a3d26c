from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel

from analytics_badge.settings import Settings, get_settings
from analytics_badge.analytics_client import AnalyticsClient, web_property_ids
from analytics_badge.auth_handler import GoogleAuthHandler
from analytics_badge.auth.session import Session, SessionLoadError, SessionManager
from analytics_badge.auth.token_model import Account, OAuthToken
from analytics_badge.badge_cache import BadgeCache
from analytics_badge.badge_renderer import layout, render_svg
from analytics_badge.config.badge_windows import metric_key
from analytics_badge.db_persistence import DatabasePersistence, get_db, init_db_pool, close_db_pool
from analytics_badge.errors import BadgeError, CacheError, NotFoundError, PersistenceError, UpstreamError
from analytics_badge.fast_cache import FastCache, cache_from_url
from analytics_badge.models import Property

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Models
# -------------------------------------------------------------------------

class RegisterPropertiesRequest(BaseModel):
    # web property id -> analytics profile id
    profiles: Dict[str, str]


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------

def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302)


def _load_session(request: Request, db: DatabasePersistence) -> Optional[Session]:
    try:
        return request.app.state.sessions.load(request, db)
    except SessionLoadError as e:
        logger.error(f"[SESSION] {e}")
        return None


def _authorized_client(request: Request, session: Session):
    """
    Analytics client for the session's account, or None when the account
    has not been linked yet.
    """
    token = session.account.get_token()
    if token is None:
        return None
    return request.app.state.analytics_factory(token)


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[FastCache] = None,
    analytics_factory: Optional[Callable[[Optional[OAuthToken]], AnalyticsClient]] = None,
    auth_handler: Optional[GoogleAuthHandler] = None,
) -> FastAPI:
    """
    Build the badge application.
    Collaborators default to the production ones derived from settings.
    """
    settings = settings or get_settings()
    cache = cache if cache is not None else cache_from_url(settings.REDIS_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage the database connection pool lifecycle."""
        init_db_pool(settings.DATABASE_URL, minconn=1, maxconn=10)
        db = DatabasePersistence()
        try:
            db.ensure_schema()
        finally:
            db.disconnect()
        yield
        close_db_pool()

    app = FastAPI(
        title="Analytics Badge",
        description="Weekly Google Analytics users rendered as an embeddable SVG badge.",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.cache = cache
    app.state.sessions = SessionManager(cache, settings.SESSION_TTL_SECONDS)
    app.state.auth_handler = auth_handler or GoogleAuthHandler(settings)
    app.state.analytics_factory = analytics_factory or (
        lambda token: AnalyticsClient(token, settings)
    )

    # -------------------------
    # Health
    # -------------------------

    @app.get("/health")
    def health_check():
        """Basic health check"""
        return {"status": "ok"}

    # -------------------------------------------------------------------------
    # Badge
    # -------------------------------------------------------------------------

    @app.get("/badge/{property_id}.svg")
    def badge(property_id: str, request: Request, db: DatabasePersistence = Depends(get_db)):
        """
        Render the weekly users badge for a registered property.
        Badges are embedded in third-party pages, so failures return an empty
        body and are only logged here.
        """
        state = request.app.state
        resolver = BadgeCache(
            state.cache, db, state.analytics_factory, state.settings.METRIC_CACHE_TTL_SECONDS
        )
        try:
            metric = resolver.resolve(property_id)
        except NotFoundError as e:
            logger.warning(f"[BADGE] [{property_id}] {e}")
            return Response(status_code=404)
        except (BadgeError, PersistenceError) as e:
            logger.error(f"[BADGE] [{property_id}] {type(e).__name__}: {e}")
            return Response(status_code=500)

        return Response(
            content=render_svg(layout(metric)),
            media_type="image/svg+xml",
            headers={"Cache-Control": f"public, max-age={state.settings.BADGE_MAX_AGE_SECONDS}"},
        )

    # -------------------------------------------------------------------------
    # Authentication (OAuth 2.0 Web Flow)
    # -------------------------------------------------------------------------

    @app.get("/")
    def index(request: Request):
        """Google consent URL for linking an analytics account."""
        return {"url": request.app.state.auth_handler.get_authorization_url()}

    @app.get("/oauth")
    def auth_callback(request: Request, code: str = "", db: DatabasePersistence = Depends(get_db)):
        """
        Handle the OAuth 2.0 callback from Google.
        The analytics username becomes the account key.
        """
        session = _load_session(request, db)
        if session is None:
            return _redirect("/")

        try:
            token = request.app.state.auth_handler.exchange(code)
            client = request.app.state.analytics_factory(token)
            summaries, token = client.list_account_summaries()
            username = summaries.get("username")
            if not username:
                raise UpstreamError("Analytics account summaries carry no username")
            if session.account.username != username:
                session.account = db.fetch_account(username) or Account(username=username)
            if token is not None:
                session.account.set_token(token)
        except (BadgeError, PersistenceError) as e:
            logger.error(f"[AUTH] Callback failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        logger.info(f"[AUTH] Linked analytics account: {username}")
        response = _redirect("/manage")
        request.app.state.sessions.commit(session, response, db)
        return response

    # -------------------------------------------------------------------------
    # Property Registration
    # -------------------------------------------------------------------------

    @app.get("/manage")
    def manage(request: Request, db: DatabasePersistence = Depends(get_db)):
        """List the user's analytics properties and the profiles registered for badges."""
        session = _load_session(request, db)
        if session is None:
            return _redirect("/")
        client = _authorized_client(request, session)
        if client is None:
            response = _redirect("/")
            request.app.state.sessions.commit(session, response, db)
            return response

        try:
            summaries, token = client.list_account_summaries()
            if token is not None:
                session.account.set_token(token)
            registered = db.fetch_properties_for_account(session.account.username)
        except (BadgeError, PersistenceError) as e:
            logger.error(f"[MANAGE] {e}")
            raise HTTPException(status_code=500, detail=str(e))

        response = JSONResponse({
            "username": session.account.username,
            "accounts": summaries.get("items", []),
            "profiles": {p.id: p.profile for p in registered},
        })
        request.app.state.sessions.commit(session, response, db)
        return response

    @app.post("/manage")
    def register_properties(
        body: RegisterPropertiesRequest,
        request: Request,
        db: DatabasePersistence = Depends(get_db),
    ):
        """
        Register badge profiles for web properties the user can see.
        Ids outside the user's account summaries are ignored.
        """
        session = _load_session(request, db)
        if session is None:
            return _redirect("/")
        client = _authorized_client(request, session)
        if client is None:
            response = _redirect("/")
            request.app.state.sessions.commit(session, response, db)
            return response

        try:
            summaries, token = client.list_account_summaries()
            if token is not None:
                session.account.set_token(token)
            owned = web_property_ids(summaries)
            properties = [
                Property(id=property_id, account=session.account.username, profile=profile)
                for property_id, profile in sorted(body.profiles.items())
                if property_id in owned
            ]
            db.upsert_properties(properties)
        except (BadgeError, PersistenceError) as e:
            logger.error(f"[MANAGE] Registration failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        # Drop stale metrics so the next badge request uses the new profile
        try:
            request.app.state.cache.delete_multi([metric_key(p.id) for p in properties])
        except CacheError as e:
            logger.error(f"[MANAGE] Cache eviction failed: {e}")

        response = JSONResponse({
            "registered": [p.id for p in properties],
            "ignored": sorted(set(body.profiles) - {p.id for p in properties}),
        })
        request.app.state.sessions.commit(session, response, db)
        return response

    return app
