import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orderflow.core.config import AUTO_CREATE_TABLES, CORS_ORIGINS, ENV
from orderflow.core.database import Base, engine
from orderflow.core.logging_setup import configure_logging
from orderflow.middleware.observability import ObservabilityMiddleware
import orderflow.models  # garante que os models são importados antes do create_all

from orderflow.routers.inbox import router as inbox_router
from orderflow.routers.internal_metrics import router as internal_metrics_router
from orderflow.routers.orders import router as orders_router
from orderflow.routers.payments import router as payments_router
from orderflow.routers.simulator import router as simulator_router
from orderflow.routers.webhook import router as webhook_router

configure_logging()

logger = logging.getLogger(__name__)


def _startup_tasks() -> None:
    # Cria tabelas (dev). Em produção, use migrations.
    if AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
        logger.info("Tables ensured via create_all (env=%s)", ENV)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Orderflow API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

# Routers
app.include_router(webhook_router)
app.include_router(simulator_router)
app.include_router(payments_router)
app.include_router(orders_router)
app.include_router(inbox_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
