#!/usr/bin/env python3
"""Start the cratefix web API with auto-reload for development."""

import uvicorn

from cratefix.config import Settings

ENDPOINTS = ("/api/add", "/api/remove", "/api/set-version", "/docs")


def main(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    base = f"http://{settings.web_host}:{settings.web_port}"
    for path in ENDPOINTS:
        print(f"{base}{path}")

    uvicorn.run(
        "apps.web.main:app",
        host=settings.web_host,
        port=settings.web_port,
        log_level=settings.log_level.lower(),
        reload=True,
        reload_dirs=["apps", "cratefix"],
    )


if __name__ == "__main__":
    main()
