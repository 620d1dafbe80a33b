#!/usr/bin/env python3
"""Run the sqlsessions demo application"""
import uvicorn

from sqlsessions.core.config import settings


def main() -> None:
    uvicorn.run(
        "sqlsessions.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
