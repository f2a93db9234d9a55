# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

import structlog
from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from farmapay.auth.profiles import ProfileStore, store_from_env
from farmapay.auth.provisioning import authenticate
from farmapay.auth.session import COOKIE_NAME, DEFAULT_MAX_AGE_SECONDS, SessionGuard
from farmapay.errors import IdentityError, Unauthenticated, Unauthorized
from farmapay.log import configure_logging
from farmapay.permissions import (
    VIEWS,
    View,
    ViewSpec,
    allowed_views,
    capabilities_for,
    cookie_settings,
    current_principal_optional,
    default_view_for,
    require_capability,
    require_principal,
    safe_next,
)

logger = structlog.get_logger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


def _wants_json(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def _render(request: Request, template_name: str, ctx: dict, status_code: int = 200):
    """TemplateResponse wrapper injecting the current principal and its navigation."""
    principal = getattr(request.state, "principal", None)
    base_ctx = {
        "current_user": principal,
        "nav": [VIEWS[v] for v in allowed_views(principal.role)] if principal else [],
    }
    return templates.TemplateResponse(
        request, template_name, {**base_ctx, **(ctx or {})}, status_code=status_code
    )


def _landing_path(principal) -> str:
    return VIEWS[default_view_for(principal.role)].path


def create_app(store: Optional[ProfileStore] = None, *, secret_key: Optional[str] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        the_store = store if store is not None else store_from_env()
        the_store.open()
        app.state.store = the_store
        app.state.guard = SessionGuard(the_store, secret_key=secret_key)
        logger.info("store_opened", store=type(the_store).__name__)
        try:
            yield
        finally:
            the_store.close()
            logger.info("store_closed", store=type(the_store).__name__)

    app = FastAPI(lifespan=lifespan)

    @app.middleware("http")
    async def _auth_middleware(request: Request, call_next):
        # The guard may block on the store; keep it off the event loop.
        request.state.principal = await run_in_threadpool(current_principal_optional, request)
        request.state.session_evaluated = True
        return await call_next(request)

    # ------------------ Error mapping ------------------

    @app.exception_handler(Unauthenticated)
    async def _unauthenticated(request: Request, exc: Unauthenticated):
        if _wants_json(request):
            return JSONResponse({"detail": exc.message}, status_code=401)
        loc = "/login"
        if exc.next_url:
            loc += "?" + urlencode({"next": exc.next_url})
        return RedirectResponse(url=loc, status_code=303)

    @app.exception_handler(Unauthorized)
    async def _unauthorized(request: Request, exc: Unauthorized):
        if _wants_json(request):
            return JSONResponse({"detail": exc.message}, status_code=403)
        return _render(request, "page.html", {"title": "Acesso negado", "forbidden": True}, status_code=403)

    @app.exception_handler(IdentityError)
    async def _identity_error(request: Request, exc: IdentityError):
        body = {"detail": exc.message}
        field = getattr(exc, "field", None)
        if field:
            body["field"] = field
        return JSONResponse(body, status_code=exc.status_code)

    # ------------------ Routes ------------------

    @app.get("/login", response_class=HTMLResponse)
    def login_get(request: Request, next: str = ""):
        principal = getattr(request.state, "principal", None)
        if principal:
            return RedirectResponse(url=safe_next(next) or _landing_path(principal), status_code=303)
        return _render(request, "login.html", {"next": next, "error": ""})

    @app.post("/login")
    def login_post(
        request: Request,
        email: str = Form(...),
        password: str = Form(...),
        next: str = Form(""),
    ):
        profile = authenticate(request.app.state.store, email, password)
        if not profile:
            logger.info("login_failed", email=(email or "").strip().lower())
            return _render(
                request, "login.html", {"next": next, "error": "Credenciais inválidas"}, status_code=401
            )
        token = request.app.state.guard.issue(profile)
        logger.info("login_succeeded", email=profile.email, profile_id=profile.id)
        dest = safe_next(next) or VIEWS[default_view_for(profile.role)].path
        resp = RedirectResponse(url=dest, status_code=303)
        resp.set_cookie(
            COOKIE_NAME,
            token,
            max_age=int(os.getenv("FARMAPAY_SESSION_MAX_AGE", str(DEFAULT_MAX_AGE_SECONDS))),
            **cookie_settings(),
        )
        return resp

    @app.post("/logout")
    def logout_post(request: Request):
        resp = RedirectResponse(url="/login", status_code=303)
        resp.delete_cookie(COOKIE_NAME)
        return resp

    @app.get("/")
    def home(request: Request):
        return RedirectResponse(url=_landing_path(require_principal(request)), status_code=303)

    @app.get("/api/me")
    def me(request: Request):
        p = require_principal(request)
        return {
            "id": p.profile_id,
            "email": p.email,
            "name": p.name,
            "role": p.role.value,
            "default_view": default_view_for(p.role).value,
            "views": [v.value for v in allowed_views(p.role)],
            "capabilities": sorted(c.value for c in capabilities_for(p.role)),
        }

    for view, spec in VIEWS.items():
        _add_view_route(app, view, spec)

    return app


def _add_view_route(app: FastAPI, view: View, spec: ViewSpec) -> None:
    def _endpoint(request: Request, principal=Depends(require_capability(spec.capability))):
        return _render(request, "page.html", {"title": spec.title, "view": view.value, "forbidden": False})

    app.add_api_route(
        spec.path,
        _endpoint,
        methods=["GET"],
        response_class=HTMLResponse,
        name=f"view_{view.name.lower()}",
    )


app = create_app()
