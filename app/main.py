"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.database import init_db
from app.logging_config import setup_logging
from app.middleware import RateLimitMiddleware
from app.routers import pages, vote, weather_vote
from app.services.voting_flow import SessionRegistry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger = setup_logging()
    await init_db()
    app.state.sessions = SessionRegistry()
    logger.info("Dispatch weather vote started")
    yield
    app.state.sessions.close_all()


app = FastAPI(
    title="Dispatch Weather Vote",
    description="Crew and estimator voting on weather-affected job dispatch",
    version="0.1.0",
    lifespan=lifespan,
)

templates = Jinja2Templates(directory="app/templates")

app.add_middleware(RateLimitMiddleware)

app.include_router(weather_vote.router)
app.include_router(vote.router)
app.include_router(pages.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse)
async def index(request: Request):
    """Landing page for visitors without a voting link."""
    return templates.TemplateResponse(request, "index.html")
