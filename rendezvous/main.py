import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from rendezvous.config import settings
from rendezvous.routers import signaling

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rendezvous Signaling Relay")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(signaling.router)

if settings.STATIC_DIR and os.path.isdir(settings.STATIC_DIR):
    static_path = settings.STATIC_DIR
    app.mount("/static", StaticFiles(directory=static_path), name="static")

    @app.get("/")
    async def read_root():
        return FileResponse(os.path.join(static_path, "index.html"))


@app.get("/config")
async def rtc_config():
    """Expose ICE server config to the frontend.

    Environment variables (optional):
    - STUN_SERVER: extra STUN url tried before the public Google ones
    - TURN_URL: e.g. turn:turn.example.com:3478
    - TURN_USERNAME
    - TURN_PASSWORD
    """
    return {"iceServers": settings.ice_servers()}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "Signaling relay is running"}


def run():
    import uvicorn
    logger.info(f"Server running on port {settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
