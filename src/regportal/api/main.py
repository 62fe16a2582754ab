"""Regportal API service entry point.

Provides the application instance for ASGI servers (uvicorn) and the
run() function behind the regportal-api console script.
"""

import logging

from regportal.api import create_app
from regportal.core.settings import get_settings

logger = logging.getLogger(__name__)

# uvicorn references this: regportal.api.main:app
app = create_app(get_settings())


def run() -> None:
    """Run the API server using uvicorn."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting Regportal API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "regportal.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
