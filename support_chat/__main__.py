import uvicorn

from support_chat.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "support_chat.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
