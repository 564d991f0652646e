from contextlib import asynccontextmanager
from pathlib import Path

import conf
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes.base import router
from utils import log

from clients.couchbase import build_store, set_store
from clients.stripe import MockPaymentClient, StripePaymentClient

log.init(conf.get_log_level(), conf.get_environment())
logger = log.get_logger(__name__)


def _payment_client_build():
    stripe_conf = conf.get_stripe_conf()
    if stripe_conf.is_configured:
        return StripePaymentClient(stripe_conf.secret_key, stripe_conf.webhook_secret)
    logger.warning("STRIPE_SECRET_KEY not set, using mock checkout sessions")
    return MockPaymentClient(stripe_conf.webhook_secret)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Select and verify storage
    backend = conf.get_storage_backend()
    store = build_store(backend)
    set_store(store)
    app.state.store = store
    logger.info(f"Verifying {backend} storage connection...")
    await store.check_connection()
    logger.info("Storage connection verified.")

    # Initialize auth client if enabled
    if conf.USE_AUTH:
        from utils import auth

        app.state.auth_client = auth.AuthClient(conf.get_auth_config())
    else:
        logger.warning("Authentication is disabled (set USE_AUTH to enable)")

    app.state.payment_client = _payment_client_build()

    # Initialize housekeeping scheduler
    from jobs.scheduler import init_scheduler, shutdown_scheduler

    init_scheduler(conf.get_housekeeping_interval_seconds())

    yield

    shutdown_scheduler()


app = FastAPI(
    title="Gavel Auction API",
    version="0.1.0",
    docs_url="/docs",
    lifespan=lifespan,
    debug=conf.get_http_expose_errors(),
)

app.include_router(router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not conf.validate():
    raise ValueError("Invalid configuration.")

http_conf = conf.get_http_conf()
logger.info(f"Starting API on port {http_conf.port}")

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        reload_dirs=[str(Path(__file__).parent), "/models", "/clients"],
        log_config=None,
    )
