"""Promptwall — FastAPI Application.

This module defines the application factory, every route of the kiosk API and
the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :class:`~promptwall.core.config.PromptwallConfig`.
- **Image generation** is delegated to a hosted inference API through
  :class:`~promptwall.core.inference.InferenceClient`; the result is streamed
  to disk by :class:`~promptwall.core.fetcher.ImageFetcher`.
- **Metadata** lives in an :class:`~promptwall.core.repository.ImageRepository`
  built once by :func:`create_app` and stored on ``app.state``.  Route
  handlers receive it through ``Depends`` so tests can inject an isolated
  instance per case.
- **The wall** polls ``/api/kiosk/state`` and follows the
  :class:`~promptwall.core.kiosk.KioskDisplay` state machine.

Every route is registered on one router mounted under ``config.base_path`` so
the kiosk can sit behind a reverse proxy at e.g. ``/mm29``.

Endpoints
---------
========  ==============================  ==================================
Method    Path                            Purpose
========  ==============================  ==================================
GET       ``/``                           Kiosk HTML page
POST      ``/api/generate``               Generate, download, record
GET       ``/api/images/recent``          Newest records (``?limit=N``)
GET       ``/api/images/count``           Number of stored records
GET       ``/api/images/{identifier}``    Image bytes (``?download=true``)
GET       ``/api/download/{filename}``    Branded attachment download
GET       ``/api/kiosk/state``            Current wall state
========  ==============================  ==================================

Usage
-----
CLI (installed entry point)::

    promptwall

Direct invocation::

    python -m promptwall.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse

from promptwall import __version__
from promptwall.api.models import (
    CountResponse,
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    KioskStateResponse,
)
from promptwall.core.config import PromptwallConfig, config as default_config
from promptwall.core.errors import NotFoundError, PromptwallError, ValidationError
from promptwall.core.fetcher import ImageFetcher
from promptwall.core.filenames import download_filename, is_safe_filename
from promptwall.core.inference import InferenceClient
from promptwall.core.kiosk import KioskDisplay
from promptwall.core.pipeline import GenerationPipeline
from promptwall.core.repository import (
    DEFAULT_RECENT_LIMIT,
    GeneratedImageRecord,
    ImageRepository,
    create_repository,
)

logger = logging.getLogger(__name__)

MAX_RECENT_LIMIT = 100
GENERIC_FAILURE_MESSAGE = "Failed to generate image. Please try again."
VIEW_CACHE_CONTROL = "public, max-age=31536000"


# ---------------------------------------------------------------------------
# Dependency helpers — collaborators live on ``app.state``.
# ---------------------------------------------------------------------------


def get_config(request: Request) -> PromptwallConfig:
    return request.app.state.config


def get_repository(request: Request) -> ImageRepository:
    return request.app.state.repository


def get_pipeline(request: Request) -> GenerationPipeline:
    return request.app.state.pipeline


def get_kiosk(request: Request) -> KioskDisplay:
    return request.app.state.kiosk


# ---------------------------------------------------------------------------
# Error mapping.
# ---------------------------------------------------------------------------


def _error_body(message: str) -> dict:
    return ErrorResponse(message=message).model_dump()


async def _handle_pipeline_error(request: Request, exc: PromptwallError) -> JSONResponse:
    """Map pipeline failures onto the HTTP contract.

    Validation messages are shown to the visitor verbatim with status 400,
    not the blanket 500 used for other generate failures, so clients can
    tell a rejected prompt from a broken backend.  Every other failure gets
    a generic message and a logged trace.
    """
    if isinstance(exc, ValidationError):
        return JSONResponse(status_code=400, content=_error_body(str(exc)))
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc) or "Image not found"})

    logger.error(f"Generation error: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body(GENERIC_FAILURE_MESSAGE))


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed generate bodies in the generate route's own format."""
    if request.url.path.endswith("/api/generate"):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        if errors and errors[0].get("type") == "missing":
            message = "Prompt is required"
        return JSONResponse(status_code=400, content=_error_body(message))
    return await request_validation_exception_handler(request, exc)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _resolve_image_path(
    identifier: str, repository: ImageRepository, images_dir: Path
) -> tuple[Path, str]:
    """Find the file behind an image id or stored filename.

    Returns:
        The file path and its stored filename.

    Raises:
        NotFoundError: If no record or file matches.
    """
    record: GeneratedImageRecord | None = repository.get_by_id(identifier)
    if record is not None:
        path = Path(record.local_path)
        if path.is_file():
            return path, record.filename
        raise NotFoundError("Image not found")

    if is_safe_filename(identifier):
        path = images_dir / identifier
        if path.is_file():
            return path, identifier
    raise NotFoundError("Image not found")


def parse_recent_limit(raw: str | None) -> int:
    """Turn the ``limit`` query value into a usable record count."""
    try:
        limit = int(raw) if raw is not None else 0
    except ValueError:
        limit = 0
    if limit <= 0:
        return DEFAULT_RECENT_LIMIT
    return min(limit, MAX_RECENT_LIMIT)


def build_router(base_path: str) -> APIRouter:
    """Create the API router mounted under *base_path*."""
    router = APIRouter(prefix=base_path)

    @router.get("/", response_class=HTMLResponse)
    async def index(cfg: PromptwallConfig = Depends(get_config)) -> HTMLResponse:
        """Serve the kiosk page.

        The page learns the API prefix from a placeholder substituted here;
        everything else is fetched from the API at runtime.

        Raises:
            HTTPException: 404 if ``index.html`` is not found.
        """
        index_path = cfg.templates_dir / "index.html"
        if index_path.exists():
            html = index_path.read_text(encoding="utf-8")
            return HTMLResponse(content=html.replace("__BASE_PATH__", cfg.base_path))
        raise HTTPException(status_code=404, detail="index.html not found")

    @router.post(
        "/api/generate",
        response_model=GenerateResponse,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def generate_image(
        req: GenerateRequest,
        pipeline: GenerationPipeline = Depends(get_pipeline),
        kiosk: KioskDisplay = Depends(get_kiosk),
    ) -> GenerateResponse:
        """Generate an image for a visitor prompt.

        1. Validates the prompt (1-500 characters).
        2. Calls the inference backend with the deployment's fixed settings.
        3. Streams the generated image into the images directory.
        4. Stores and returns the metadata record.

        The kiosk display moves to ``generating`` for the duration and to
        ``displaying`` on success.

        Raises:
            PromptwallError: Mapped to 400 (validation) or 500 (everything
                else) by the application's exception handler.
        """
        kiosk.begin_generation()
        try:
            record = await pipeline.run(req.prompt)
        except Exception:
            kiosk.fail()
            raise
        kiosk.show(record)
        return GenerateResponse(image=record)

    @router.get("/api/images/recent", response_model=list[GeneratedImageRecord])
    async def get_recent_images(
        limit: str | None = Query(None),
        repository: ImageRepository = Depends(get_repository),
    ) -> list[GeneratedImageRecord]:
        """Return the most recent records, newest first.

        A missing, non-numeric or non-positive ``limit`` means the default
        of 12; anything above :data:`MAX_RECENT_LIMIT` is capped.
        """
        return repository.list_recent(parse_recent_limit(limit))

    # Registered before the ``{identifier}`` route so "count" is not read as an id.
    @router.get("/api/images/count", response_model=CountResponse)
    async def get_image_count(
        repository: ImageRepository = Depends(get_repository),
    ) -> CountResponse:
        return CountResponse(count=repository.count())

    @router.get("/api/images/{identifier}")
    async def get_image(
        identifier: str,
        download: bool = False,
        repository: ImageRepository = Depends(get_repository),
        cfg: PromptwallConfig = Depends(get_config),
    ) -> FileResponse:
        """Serve image bytes by record id or stored filename.

        Args:
            identifier: Record id or stored filename.
            download: If ``True``, send as an attachment instead of inline.

        Raises:
            NotFoundError: 404 if neither a record nor a file matches.
        """
        path, filename = _resolve_image_path(identifier, repository, cfg.images_dir)

        if download:
            return FileResponse(
                path,
                media_type="application/octet-stream",
                headers={
                    "Content-Disposition": f'attachment; filename="{filename}"',
                    "Cache-Control": "no-cache",
                },
            )
        return FileResponse(
            path,
            media_type="image/png",
            headers={"Cache-Control": VIEW_CACHE_CONTROL},
        )

    @router.get("/api/download/{filename}")
    async def download_image(
        filename: str,
        cfg: PromptwallConfig = Depends(get_config),
    ) -> FileResponse:
        """Force a browser download under a branded filename.

        ``2025-03-14T09-26-53-589Z_a-cat.png`` downloads as ``MM29-a-cat.png``.

        Raises:
            NotFoundError: 404 if the file does not exist.
        """
        path = cfg.images_dir / filename
        if not is_safe_filename(filename) or not path.is_file():
            raise NotFoundError("Image not found")

        return FileResponse(
            path,
            media_type="application/octet-stream",
            headers={
                "Content-Disposition": (
                    f'attachment; filename="{download_filename(filename, cfg.brand_prefix)}"'
                ),
                "Cache-Control": "no-cache",
                "Content-Transfer-Encoding": "binary",
            },
        )

    @router.get("/api/kiosk/state", response_model=KioskStateResponse)
    async def get_kiosk_state(kiosk: KioskDisplay = Depends(get_kiosk)) -> dict:
        """Return what the wall should currently show."""
        return kiosk.snapshot()

    return router


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup and cancel any pending kiosk reset on shutdown."""
    cfg: PromptwallConfig = app.state.config
    logger.info(
        f"Promptwall {__version__} serving under '{cfg.base_path or '/'}' "
        f"with {type(app.state.repository).__name__}"
    )

    yield

    app.state.kiosk.reset()
    logger.info("Promptwall shut down.")


def create_app(
    config: PromptwallConfig | None = None,
    repository: ImageRepository | None = None,
    inference: InferenceClient | None = None,
    fetcher: ImageFetcher | None = None,
    kiosk: KioskDisplay | None = None,
) -> FastAPI:
    """Build the FastAPI application and its collaborators.

    Any collaborator not supplied is constructed from *config*.

    Args:
        config: Configuration; defaults to the global instance.
        repository: Metadata store.
        inference: Inference backend client.
        fetcher: Image downloader.
        kiosk: Display state machine.

    Returns:
        A configured :class:`FastAPI` instance.
    """
    cfg = config or default_config
    repository = repository or create_repository(cfg)
    inference = inference or InferenceClient.from_config(cfg)
    fetcher = fetcher or ImageFetcher(cfg.images_dir, timeout=cfg.request_timeout)
    kiosk = kiosk or KioskDisplay(cfg.display_seconds)

    app = FastAPI(
        title="Promptwall",
        description="Kiosk front end for hosted text-to-image generation.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.config = cfg
    app.state.repository = repository
    app.state.kiosk = kiosk
    app.state.pipeline = GenerationPipeline(cfg, repository, inference, fetcher)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PromptwallError, _handle_pipeline_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.include_router(build_router(cfg.base_path))
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Host, port and log level come from :data:`~promptwall.core.config.config`
    (``PROMPTWALL_SERVER_HOST``, ``PROMPTWALL_SERVER_PORT``,
    ``PROMPTWALL_LOG_LEVEL``).

    This function is registered as the ``promptwall`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=default_config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "promptwall.api.main:app",
        host=default_config.server_host,
        port=default_config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
