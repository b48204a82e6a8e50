import logging
from typing import Optional

from fastapi import FastAPI

from crosswatch.api.routes import router as api_router
from crosswatch.config import Settings, get_settings
from crosswatch.service import WatchService


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[WatchService] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(title="Crosswatch API", version="0.1.0")
    app.include_router(api_router)
    app.state.settings = settings
    app.state.watch_service = service or WatchService(settings)

    @app.on_event("startup")
    async def _startup():
        # Seed history and open one stream per watched symbol.
        await app.state.watch_service.start()

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.watch_service.stop()

    @app.get("/health")
    def health():
        svc = app.state.watch_service
        return {
            "status": "ok",
            "app_env": settings.app_env,
            "provider_config": settings.provider,
            "provider_loaded": svc.provider.__class__.__name__,
            "watching": sorted(svc.watchers),
            "streams": {
                symbol: {"state": w.stream_state, "failures": w.stream_failures}
                for symbol, w in sorted(svc.watchers.items())
            },
        }

    return app


app = create_app()
