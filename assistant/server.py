import os

import structlog
import uvicorn

from application.api.api_server import create_app
from infrastructure.config.settings import get_settings

logger = structlog.get_logger(__name__)

app = create_app(get_settings())


def main():
    if app.state.services.runtime is None:
        logger.warning("No agent runtime configured, chat endpoints will answer 503")

    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=get_settings().log_level.lower()
    )


if __name__ == "__main__":
    main()
