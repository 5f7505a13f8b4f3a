"""Run the marketplace service with uvicorn: ``python -m marketplace_service``."""

from __future__ import annotations

import uvicorn

from marketplace_service.config import get_settings


def main() -> None:
    """Serve the app on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "marketplace_service.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
