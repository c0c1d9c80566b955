# API v1 router aggregation.
# Created: 2026-10-18
#
# mount_v1_routers(app) registers all domain routers at /api/v1/.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Imported lazily inside mount_v1_routers().
_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("quoteauth.api.v1.apps", "router", "OAuth Apps"),
    ("quoteauth.api.v1.oauth2", "router", "OAuth2"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 domain routers on *app* at ``/api/v1``."""
    for module_path, attr_name, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name), prefix="/api/v1")
        logger.debug("Mounted v1 router: %s (%s)", module_path, tag)
