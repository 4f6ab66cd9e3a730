import logging

from fastapi import FastAPI
from dotenv import load_dotenv

from .config import settings
from .db import close_db_pool, init_db_pool, ping
from .routes import router as pipeline_router

load_dotenv()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Dealflow Pipeline", version="0.1.0")
app.include_router(pipeline_router)


@app.on_event("startup")
async def _startup():
    if settings.write_backend == "postgres":
        await init_db_pool()


@app.on_event("shutdown")
async def _shutdown():
    await close_db_pool()


@app.get("/health")
async def health():
    db_ok = await ping() if settings.write_backend == "postgres" else None
    return {
        "ok": True,
        "service": settings.service_name,
        "env": settings.env,
        "write_backend": settings.write_backend,
        "db": db_ok,
    }
