"""
Analytics Badge - service entry point

    python -m analytics_badge.main
"""

import logging
import os

import uvicorn

from analytics_badge.api import create_app
from analytics_badge.settings import get_settings


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = create_app(settings)
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
