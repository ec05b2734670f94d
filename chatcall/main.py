from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import logging

from chatcall.routers import calls
from chatcall.routers import friendships
from chatcall.routers import messages
from chatcall.routers import rooms
from chatcall.routers import users
from chatcall.db import Base, engine
# Ensure models are imported so metadata is populated before create_all
from chatcall import db_models  # noqa: F401
from chatcall.config import ice_servers, settings

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

app = FastAPI(title="chatcall")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(calls.router)
app.include_router(users.router)
app.include_router(rooms.router)
app.include_router(messages.router)
app.include_router(friendships.router)

@app.get("/config")
async def rtc_config():
    """Expose ICE server config to call clients.

    Environment variables (optional):
    - STUN_SERVER: extra stun: url tried before the public fallbacks
    - TURN_URL: e.g. turn:turn.example.com:3478
    - TURN_USERNAME
    - TURN_PASSWORD
    """
    return {"iceServers": ice_servers(settings)}

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "chatcall",
    }

# Ensure tables are created on startup (simple auto-migrate)
@app.on_event("startup")
def on_startup():
    # Create DB tables if they don't exist
    Base.metadata.create_all(bind=engine)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
