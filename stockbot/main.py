from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from stockbot.api.routes import router
from stockbot.config.settings import Settings, get_settings
from stockbot.runtime import Runtime, build_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    # a ValidationError here aborts startup: missing credentials are fatal
    settings = app.state.get_settings()
    runtime = app.state.runtime_factory(settings)
    app.state.runtime = runtime
    print(
        f"[APP][startup] symbols={','.join(settings.STOCKBOT_SYMBOLS)} messenger={settings.MESSENGER} "
        f"scheduler_enabled={settings.SCHEDULER_ENABLED}",
        flush=True,
    )
    if settings.SCHEDULER_ENABLED:
        runtime.scheduler.start()

    try:
        yield
    finally:
        await runtime.scheduler.stop()
        await runtime.quote_source.close()
        print("[APP][shutdown]", flush=True)


def create_app(
    settings_provider: Callable[[], Settings] = get_settings,
    runtime_factory: Callable[[Settings], Runtime] = build_runtime,
) -> FastAPI:
    application = FastAPI(title="Stockbot", version="0.1.0", lifespan=lifespan)
    application.include_router(router, prefix="/v1")
    # NOTE: settings are loaded in lifespan so importing the app needs no env.
    application.state.get_settings = settings_provider
    application.state.runtime_factory = runtime_factory
    return application


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown, which closes the browser
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    run()
