from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import settings
from .db import ContentStoreError, get_store
from .logging_utils import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .routes import courses, payments

setup_logging()

if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        await get_store().close()


app = FastAPI(title="Coursegate Backend", version="0.1.0", lifespan=lifespan)

app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_origin_regex=settings.cors_allow_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "X-Requested-With",
        "X-Request-ID",
    ],
    expose_headers=["X-Request-ID"],
)

app.include_router(courses.router)
app.include_router(payments.router)


@app.get("/healthz")
async def healthz():
    return {"ok": True, "message": "Backend responding"}


@app.get("/readyz")
async def readyz():
    try:
        await get_store().select("courses", limit=1)
    except ContentStoreError as exc:
        raise HTTPException(status_code=503, detail="content store unavailable") from exc
    return {"ok": True, "store": "ready"}


@app.get("/metrics")
def metrics_endpoint():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
