"""Fubako FastAPI application."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from pathlib import Path

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from fubako.config import Settings
from fubako.core.errors import (
    ForbiddenPathError,
    InvalidPageIdError,
    LockContentionError,
    PageNotFoundError,
    PageReadError,
    WatchError,
)
from fubako.core.models import PageId
from fubako.core.parser import render_page
from fubako.core.search import filter_pages
from fubako.core.sync import PageWatcher, SharedIndex

logger = logging.getLogger(__name__)

# Setup templates and static files
templates_path = Path(__file__).parent / "templates"
static_path = Path(__file__).parent / "static"

templates = Jinja2Templates(directory=str(templates_path))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: build the index and run the file watcher."""
    settings: Settings = app.state.settings
    shared = SharedIndex.load(settings)
    app.state.index = shared

    watcher: PageWatcher | None = None
    monitor_task: asyncio.Task | None = None
    if settings.watch:
        watcher = PageWatcher(shared)
        watcher.start()
        monitor_task = asyncio.create_task(watcher.monitor(settings.monitor_interval))
    try:
        yield
    finally:
        if monitor_task is not None:
            monitor_task.cancel()
            with suppress(asyncio.CancelledError, WatchError):
                await monitor_task
        if watcher is not None:
            watcher.stop()


def get_shared_index(request: Request) -> SharedIndex:
    """Dependency returning the index handle created by the lifespan."""
    return request.app.state.index


def parse_page_id(page_id: str) -> PageId:
    """Path parameter dependency; unknown ID formats are a 404."""
    try:
        return PageId.parse(page_id)
    except InvalidPageIdError as e:
        raise PageNotFoundError(str(e)) from e


# Template context helper
def get_context(request: Request, **kwargs) -> dict:
    """Create base context for templates."""
    return {
        "app_title": request.app.state.settings.app_title,
        **kwargs,
    }


def page_response(request: Request, shared: SharedIndex, page_id: PageId) -> HTMLResponse:
    """Render one page with its backlinks."""
    view = shared.page_view(page_id)
    # Rendered after the lock is released
    html_content = render_page(shared.storage, page_id)
    return templates.TemplateResponse(
        request,
        "page/view.html",
        get_context(request, page=view, html_content=html_content),
    )


def list_response(request: Request, shared: SharedIndex, q: str) -> HTMLResponse:
    """Render the page list, filtered by ``q``."""
    q = q.strip()
    pages = filter_pages(shared.storage, shared.list_pages(), q)
    return templates.TemplateResponse(
        request,
        "page/list.html",
        get_context(request, pages=pages, query=q),
    )


def error_response(request: Request, status_code: int, message: str) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        get_context(request, status_code=status_code, message=message),
        status_code=status_code,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the application.

    Args:
        settings: Application settings. Loaded from the environment and
            config file when omitted.
    """
    settings = settings or Settings()
    app = FastAPI(
        title=settings.app_title,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ========== Errors ==========

    @app.exception_handler(PageNotFoundError)
    async def not_found_handler(request: Request, exc: PageNotFoundError):
        return error_response(request, 404, "Page not found")

    @app.exception_handler(ForbiddenPathError)
    async def forbidden_handler(request: Request, exc: ForbiddenPathError):
        return error_response(request, 403, "Forbidden")

    @app.exception_handler(LockContentionError)
    async def conflict_handler(request: Request, exc: LockContentionError):
        logger.warning("Request %s hit index lock contention", request.url.path)
        return error_response(request, 409, "The page index is busy")

    @app.exception_handler(PageReadError)
    async def read_error_handler(request: Request, exc: PageReadError):
        logger.error("Read failure serving %s: %s", request.url.path, exc)
        return error_response(request, 500, "Failed to read page")

    # ========== Pages ==========
    # Plain def handlers run in the threadpool; the index lock is a threading.Lock

    @app.get("/", response_class=HTMLResponse)
    def root_or_list_pages(
        request: Request,
        q: str = "",
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """Root page if one exists, otherwise the page list."""
        try:
            return page_response(request, shared, PageId.root())
        except PageNotFoundError:
            return list_response(request, shared, q)

    @app.get("/pages", response_class=HTMLResponse)
    def list_pages(
        request: Request,
        q: str = "",
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """List all pages, optionally filtered by full-text query."""
        return list_response(request, shared, q)

    @app.get("/pages/{page_id}", response_class=HTMLResponse)
    def view_page(
        request: Request,
        page_id: PageId = Depends(parse_page_id),
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """View a page."""
        return page_response(request, shared, page_id)

    @app.get("/pages/{page_id}/raw")
    def raw_page(
        page_id: PageId = Depends(parse_page_id),
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """Get raw markdown content."""
        return {"id": str(page_id), "content": shared.storage.read_raw(page_id)}

    # ========== Titles ==========

    @app.get("/titles", response_class=HTMLResponse)
    def list_titles(
        request: Request,
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """List every known title with its pages."""
        return templates.TemplateResponse(
            request,
            "titles.html",
            get_context(request, titles=shared.list_titles()),
        )

    @app.get("/titles/{title:path}")
    def page_by_title(
        title: str,
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """Redirect to the page with this title (lowest ID on ties)."""
        page_id = shared.first_page_for_title(title)
        if page_id is None:
            raise PageNotFoundError(f"no page titled {title!r}")
        return RedirectResponse(url=f"/pages/{page_id}", status_code=302)

    # ========== Assets ==========

    @app.get("/images/{image_name}")
    def get_image(
        image_name: str,
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """Serve an image from the data directory."""
        return FileResponse(shared.storage.image_path(image_name))

    app.mount("/static", StaticFiles(directory=str(static_path)), name="static")

    # Wiki links point at /{id}; registered last so it never shadows the above
    @app.get("/{page_id}", response_class=HTMLResponse)
    def view_page_short(
        request: Request,
        page_id: PageId = Depends(parse_page_id),
        shared: SharedIndex = Depends(get_shared_index),
    ):
        """View a page by its short URL."""
        return page_response(request, shared, page_id)

    return app


app = create_app()


def run() -> None:
    """Serve the wiki on the configured host and port."""
    settings = Settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
