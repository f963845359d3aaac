import uvicorn

from shortener.config import settings
from shortener.log_config import configure_logging
from shortener.main import app


def main() -> None:
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
