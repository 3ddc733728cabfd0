"""Run the service with uvicorn: ``python -m puipr``."""

import uvicorn

from puipr.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "puipr.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
