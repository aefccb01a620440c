"""Exports for portal API routers."""

from . import (  # noqa: F401
    admin,
    analytics,
    catalog,
    directors,
    logs,
    public,
    stats,
)
