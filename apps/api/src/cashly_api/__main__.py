import uvicorn

from cashly_api.core.settings import settings


def main() -> None:
    uvicorn.run(
        "cashly_api.app:create_app",
        factory=True,
        reload=settings.environment == "development",
        log_config=None,
    )


if __name__ == "__main__":
    main()
