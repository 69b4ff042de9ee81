"""
Direct execution entry point:
    python -m app
"""

import uvicorn

from app.config import get_settings


def main() -> None:
    settings = get_settings()

    uvicorn.run(
        "app.main:create_application",
        factory=True,
        host=settings.LISTEN_ADDRESS,
        port=settings.LISTEN_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
