"""API package exports for routers."""

from . import health, models, app_definitions  # noqa: F401
