import asyncio, logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional

from .settings import Settings, settings as default_settings
from .api import router as api_router
from .fulfillment import SmartHomeFulfillment
from .gateway_client import GatewayClient
from .homegraph import HomeGraphClient
from .local_agent import LocalExecutionApp
from .state import StateStore, report_state_consumer

def create_app(settings: Settings, gateway: Optional[GatewayClient] = None,
               homegraph: Optional[HomeGraphClient] = None) -> FastAPI:
    gateway = gateway or GatewayClient(timeout=settings.UPSTREAM_TIMEOUT)
    homegraph = homegraph or HomeGraphClient(settings.HOMEGRAPH_URL, settings.AGENT_USER_ID,
                                             credentials_file=settings.HOMEGRAPH_CREDENTIALS,
                                             timeout=settings.UPSTREAM_TIMEOUT)
    store = StateStore(settings.DB_URL)

    app = FastAPI(title="Gateway Smart Home Bridge", version="0.1.0")
    app.include_router(api_router)
    # the request-sync trigger is called from browsers
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    app.state.settings = settings
    app.state.store = store
    app.state.homegraph = homegraph
    app.state.fulfillment = SmartHomeFulfillment(settings, gateway, store)
    app.state.local_app = LocalExecutionApp(settings, gateway)
    app.state.tasks = []

    @app.on_event("startup")
    async def on_start():
        await store.init_db()
        if settings.REPORT_STATE_ENABLED:
            app.state.tasks.append(asyncio.create_task(report_state_consumer(store.feed, homegraph)))

    @app.on_event("shutdown")
    async def on_stop():
        for t in app.state.tasks:
            t.cancel()

    @app.get("/")
    def root():
        return {"name": "gateway-bridge", "status": "ok"}

    return app

logging.basicConfig(level=getattr(logging, default_settings.LOG_LEVEL, "INFO"))

app = create_app(default_settings)
