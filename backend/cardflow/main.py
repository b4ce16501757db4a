# ------------------------------
# cardflow form service
# Run with: uvicorn cardflow.main:app --reload   (from backend/)
# ------------------------------
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cardflow.api import forms
from cardflow.core import config
from cardflow.core.logging import configure_logging
from cardflow.db import models  # registers the tables on Base.metadata
from cardflow.db.base import Base
from cardflow.db.session import engine
from cardflow.routes.sessions import router as sessions_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # No migrations yet: tables are created on boot
    Base.metadata.create_all(bind=engine)
    logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))
    yield


app = FastAPI(
    title="Card Flow API",                 # Shows up in docs
    version=config.API_VERSION,
    lifespan=lifespan,
)

# Embedded forms are served from arbitrary customer sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/")
def root():
    return {"message": "API is running. Go to /docs for Swagger UI."}


app.include_router(forms.router, prefix="/api")
app.include_router(sessions_router, prefix="/api")


def run():
    # console entry point: `cardflow-api`
    import uvicorn

    uvicorn.run("cardflow.main:app", host=config.API_HOST, port=config.API_PORT)
