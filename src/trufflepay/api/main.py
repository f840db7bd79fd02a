import uvicorn

from trufflepay.config import get_settings

from .app import create_app

app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "trufflepay.api.main:app",
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    run()
