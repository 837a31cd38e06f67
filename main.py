from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

import models  # noqa: F401  註冊所有資料表到 Base.metadata
from database import Base, engine, settings
from api import games, players, rounds, websocket

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 在應用啟動時建立資料庫表
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    yield
    # Shutdown: 釋放連線池
    engine.dispose()


app = FastAPI(
    title="Xi Dach Session API",
    description="Backend API for running Vietnamese Blackjack party games",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(games.router)
app.include_router(players.router)
app.include_router(rounds.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": "Xi Dach Session API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
