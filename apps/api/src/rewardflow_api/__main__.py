import uvicorn

from rewardflow_api.core.settings import Settings, get_settings


def main(settings: Settings | None = None) -> None:
    """Serve the condition engine API; reload defaults on only in development."""

    settings = settings or get_settings()
    reload = settings.api_reload if settings.api_reload is not None else settings.environment == "development"
    uvicorn.run(
        "rewardflow_api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=reload,
        workers=None if reload else settings.api_workers,
    )


if __name__ == "__main__":
    main()
