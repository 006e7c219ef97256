"""mdwiki FastAPI application."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Form, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from mdwiki.config import settings
from mdwiki.core.auth import Authenticator
from mdwiki.core.editor import EditCoordinator
from mdwiki.core.errors import (
    InvalidCredentialsError,
    RepositoryError,
    TooLargeError,
    UnauthenticatedError,
    UnsupportedTypeError,
    UploadError,
)
from mdwiki.core.models import EditOutcome, EditState, Identity
from mdwiki.core.paths import PathResolver
from mdwiki.core.storage import RepositoryStore
from mdwiki.core.uploads import UploadHandler

logger = logging.getLogger(__name__)

store = RepositoryStore(settings)
resolver = PathResolver(settings)
authenticator = Authenticator.from_settings(settings)
uploads = UploadHandler.from_settings(settings)
coordinator = EditCoordinator(authenticator, resolver, store, max_depth=settings.max_depth)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: set up the wiki and drop sessions on shutdown."""
    await run_in_threadpool(store.initialize)
    if not authenticator.credentials:
        logger.warning("No users configured, nobody will be able to log in")
    yield
    authenticator.sessions.clear()


# Initialize app
app = FastAPI(
    title=settings.app_title,
    debug=settings.debug,
    lifespan=lifespan,
)

templates_path = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=str(templates_path))

# Status for a form re-rendered after a failed create/edit
FORM_STATUS = {
    EditState.INVALID_PATH: 400,
    EditState.ALREADY_EXISTS: 409,
    EditState.WRITE_FAILED: 500,
    EditState.COMMIT_FAILED: 500,
}

UPLOAD_STATUS = {
    TooLargeError: 413,
    UnsupportedTypeError: 415,
}


def session_token(request: Request) -> str | None:
    return request.cookies.get(settings.session_cookie)


def current_user(request: Request) -> Identity | None:
    """Logged-in user, or None. For display only."""
    try:
        return authenticator.authenticate(session_token(request))
    except UnauthenticatedError:
        return None


# Template context helper
def get_context(request: Request, **kwargs) -> dict:
    """Create base context for templates."""
    user = current_user(request)
    return {
        "request": request,
        "app_title": settings.app_title,
        "user": user.username if user else None,
        "home_url": settings.home_url,
        **kwargs,
    }


def render_login(request: Request, message: str | None, status_code: int = 200, username: str = ""):
    return templates.TemplateResponse(
        request,
        "login.html",
        get_context(request, message=message, username=username),
        status_code=status_code,
    )


@app.exception_handler(UnauthenticatedError)
async def unauthenticated_handler(request: Request, exc: UnauthenticatedError):
    """Mutating routes answer unauthenticated requests with the login form."""
    if request.url.path.startswith("/upload"):
        return PlainTextResponse(exc.message, status_code=401)
    return render_login(request, exc.message, status_code=401)


@app.exception_handler(RepositoryError)
async def repository_error_handler(request: Request, exc: RepositoryError):
    logger.error(
        "Repository error on %s: %s %s",
        request.url.path,
        exc.message,
        exc.context,
        exc_info=exc,
    )
    return templates.TemplateResponse(
        request,
        "error.html",
        get_context(request, message=exc.message),
        status_code=500,
    )


def not_found(request: Request, outcome: EditOutcome) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        get_context(request, message=outcome.message or "Page not found."),
        status_code=404,
    )


# ========== Session ==========


@app.get("/login", response_class=HTMLResponse)
async def login_form(request: Request):
    """Login form."""
    return render_login(request, None)


@app.post("/login", response_class=HTMLResponse)
async def login(request: Request, username: str = Form(""), password: str = Form("")):
    """Check credentials and set the session cookie."""
    try:
        session = await run_in_threadpool(authenticator.login, username, password)
    except InvalidCredentialsError as e:
        return render_login(request, e.message, status_code=401, username=username)

    response = RedirectResponse(url=settings.home_url, status_code=302)
    response.set_cookie(
        settings.session_cookie,
        session.token,
        max_age=settings.session_ttl,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return response


@app.get("/logout")
async def logout(request: Request):
    """Revoke the session and clear the cookie."""
    authenticator.logout(session_token(request))
    response = RedirectResponse(url=settings.home_url, status_code=302)
    response.delete_cookie(settings.session_cookie)
    return response


# ========== Pages ==========


@app.get("/new", response_class=HTMLResponse)
async def new_page_form(request: Request):
    """New page form."""
    authenticator.authenticate(session_token(request))
    return templates.TemplateResponse(
        request,
        "new_page.html",
        get_context(request, file="", content="", message=None),
    )


@app.post("/new", response_class=HTMLResponse)
async def new_page(request: Request, file: str = Form(""), content: str = Form("")):
    """Create a page and redirect to it."""
    outcome = await coordinator.create(session_token(request), file, content)

    if outcome.ok:
        return RedirectResponse(url=outcome.path.url, status_code=302)
    if outcome.state is EditState.UNAUTHORIZED:
        raise UnauthenticatedError()

    return templates.TemplateResponse(
        request,
        "new_page.html",
        get_context(request, file=file, content=content, message=outcome.message),
        status_code=FORM_STATUS.get(outcome.state, 400),
    )


@app.get("/edit/{file:path}", response_class=HTMLResponse)
async def edit_page_form(request: Request, file: str):
    """Edit form for an existing page."""
    outcome = await coordinator.load(session_token(request), file)

    if outcome.state is EditState.UNAUTHORIZED:
        raise UnauthenticatedError()
    if not outcome.ok:
        return not_found(request, outcome)

    return templates.TemplateResponse(
        request,
        "edit_page.html",
        get_context(
            request,
            file=str(outcome.path),
            page_url=outcome.path.url,
            content=outcome.content,
            last_commit=outcome.commit,
            message=None,
        ),
    )


@app.post("/edit/{file:path}", response_class=HTMLResponse)
async def edit_page(request: Request, file: str, content: str = Form("")):
    """Save page content and redirect to the page."""
    outcome = await coordinator.edit(session_token(request), file, content)

    if outcome.ok:
        return RedirectResponse(url=outcome.path.url, status_code=302)
    if outcome.state is EditState.UNAUTHORIZED:
        raise UnauthenticatedError()
    if outcome.state in (EditState.NOT_FOUND, EditState.INVALID_PATH):
        return not_found(request, outcome)

    return templates.TemplateResponse(
        request,
        "edit_page.html",
        get_context(
            request,
            file=str(outcome.path),
            page_url=outcome.path.url,
            content=content,
            last_commit=None,
            message=outcome.message,
        ),
        status_code=FORM_STATUS.get(outcome.state, 400),
    )


# ========== Uploads ==========


@app.post("/upload/image", response_class=PlainTextResponse)
async def upload_image(request: Request):
    """Store the raw request body as an image and return its URL."""
    identity = authenticator.authenticate(session_token(request))
    content_type = request.headers.get("content-type")

    try:
        uploads.extension_for(content_type)
        declared = request.headers.get("content-length")
        if declared and declared.isdigit():
            uploads.check_size(int(declared))

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            uploads.check_size(len(body))

        reference = await run_in_threadpool(uploads.store, bytes(body), content_type, identity)
    except UploadError as e:
        logger.warning("Rejected upload from %s: %s", identity.username, e.message)
        return PlainTextResponse(e.message, status_code=UPLOAD_STATUS.get(type(e), 500))

    return PlainTextResponse(reference.url)
