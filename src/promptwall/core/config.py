"""Configuration management for the Promptwall kiosk service.

All configuration is loaded through Pydantic Settings.  Values come from
environment variables with the ``PROMPTWALL_`` prefix, allowing a kiosk
deployment to be tuned without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:

1. Environment variables (``PROMPTWALL_*`` prefix)
2. ``.env`` file in the working directory
3. Default values defined in :class:`PromptwallConfig`

Two settings also accept the unprefixed names used by common hosting
platforms:

- the inference credential is read from ``PROMPTWALL_REPLICATE_API_TOKEN``,
  ``REPLICATE_API_TOKEN`` or ``REPLICATE_TOKEN``
- the reverse-proxy base path is read from ``PROMPTWALL_BASE_PATH`` or
  ``BASE_PATH``

Example .env file::

    REPLICATE_API_TOKEN=r8_xxx
    PROMPTWALL_IMAGES_DIR=generated_images
    PROMPTWALL_REPOSITORY_BACKEND=sqlite
    PROMPTWALL_BASE_PATH=/mm29

Generation Constants
--------------------
The model identifier, aspect ratio, output format, quality, step count and
guidance scale are fixed per deployment.  Visitors only ever supply the
prompt text; everything else sent to the inference backend comes from here.

Global Configuration Instance
------------------------------
A global ``config`` instance is created at import time and used as the
default by :func:`promptwall.api.main.create_app`.  Tests build their own
instances and pass them in explicitly.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Templates ship inside the package so the kiosk page works from an
# installed wheel as well as from a source checkout.
_PACKAGE_DIR = Path(__file__).resolve().parent.parent


class PromptwallConfig(BaseSettings):
    """Main configuration for the Promptwall kiosk service.

    Attributes
    ----------
    Inference Backend:
        replicate_api_token : str
            Credential for the hosted inference API.
        replicate_api_base : str
            Base URL of the inference HTTP API.
        model_id : str
            ``owner/name`` identifier of the hosted model.
        model_label : str
            Label stored on every record as ``modelUsed``.

    Generation Constants:
        aspect_ratio : str
            Aspect ratio tag sent upstream and stored as ``resolution``.
        output_format : Literal["png", "jpg", "webp"]
            Image format requested from the backend.
        output_quality : int
            Encoder quality requested from the backend (0-100).
        num_inference_steps : int
            Denoising steps (schnell models are tuned for 4).
        guidance_scale : float | None
            Guidance scale, or ``None`` to leave the model default.
        prompt_prefix / prompt_suffix : str
            Trigger word and style text wrapped around every visitor prompt.

    Storage:
        images_dir : Path
            Directory downloaded images are written to.
        repository_backend : Literal["memory", "sqlite"]
            Metadata repository implementation.
        database_path : Path
            SQLite database file (``sqlite`` backend only).

    HTTP:
        base_path : str
            Prefix for every route when deployed behind a reverse proxy.
        brand_prefix : str
            Prefix for the filenames offered to browsers on download.
        server_host / server_port : str / int
            Bind address for the uvicorn server.

    Kiosk:
        display_seconds : float
            How long a finished image stays on the wall before the display
            resets to idle.

    Notes
    -----
    - ``images_dir`` is created lazily by the image fetcher on first write.
    - ``base_path`` is normalised to either ``""`` or ``/segment`` without a
      trailing slash.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PROMPTWALL_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Inference backend
    replicate_api_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "PROMPTWALL_REPLICATE_API_TOKEN",
            "REPLICATE_API_TOKEN",
            "REPLICATE_TOKEN",
        ),
        description="Credential for the hosted inference API",
    )
    replicate_api_base: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the inference HTTP API",
    )
    model_id: str = Field(
        default="black-forest-labs/flux-schnell",
        description="Hosted model identifier (owner/name)",
    )
    model_label: str = Field(
        default="flux-schnell-mm29-style",
        description="Model label recorded on every generated image",
    )

    # Generation constants
    aspect_ratio: str = Field(
        default="3:4",
        description="Aspect ratio requested upstream (3:4 suits the LED wall)",
    )
    output_format: Literal["png", "jpg", "webp"] = Field(default="png")
    output_quality: int = Field(default=90, ge=0, le=100)
    num_inference_steps: int = Field(default=4, ge=1, le=50)
    guidance_scale: float | None = Field(
        default=None,
        description="Guidance scale; None leaves the model default in place",
    )
    prompt_prefix: str = Field(
        default="MM29",
        description="Trigger word placed before the visitor prompt",
    )
    prompt_suffix: str = Field(
        default=(
            "Maya style, futuristic streetwear, high tech fashion, "
            "minimalist design, professional photography"
        ),
        description="Style text appended to the visitor prompt",
    )
    request_timeout: float | None = Field(
        default=120.0,
        description="Timeout in seconds for upstream and download calls (None disables)",
    )

    # Storage
    images_dir: Path = Field(
        default=Path("generated_images"),
        description="Directory downloaded images are written to",
    )
    repository_backend: Literal["memory", "sqlite"] = Field(
        default="memory",
        description="Metadata repository implementation",
    )
    database_path: Path = Field(
        default=Path("data/promptwall.db"),
        description="SQLite database file for the sqlite backend",
    )

    # HTTP surface
    base_path: str = Field(
        default="",
        validation_alias=AliasChoices("PROMPTWALL_BASE_PATH", "BASE_PATH"),
        description="Route prefix for reverse-proxied deployments",
    )
    brand_prefix: str = Field(
        default="MM29",
        description="Prefix for filenames offered on download",
    )
    templates_dir: Path = Field(
        default=_PACKAGE_DIR / "templates",
        description="Directory holding index.html",
    )
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=5000, ge=1024, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # Kiosk behaviour
    display_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds a finished image stays up before the wall resets",
    )

    @field_validator("base_path")
    @classmethod
    def _normalise_base_path(cls, value: str) -> str:
        """Strip surrounding slashes and re-add a single leading one."""
        stripped = value.strip().strip("/")
        return f"/{stripped}" if stripped else ""


# Global configuration instance, loaded from PROMPTWALL_* variables and .env.
config = PromptwallConfig()
