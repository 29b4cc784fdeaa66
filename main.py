import logging
from datetime import datetime
from fastapi import FastAPI, Depends
from fastapi.responses import JSONResponse
import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from config import REDIS_URL, LOG_LEVEL
from database import init_models, dispose_engine, get_db
from errors import register_error_handlers
from routers import links, conversions, analytics, admin

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)
app = FastAPI(
    title="Campaign Click Tracker",
    version="1.0.0",
    description="Short links for video campaigns with click-to-conversion attribution",
)
register_error_handlers(app)

app.include_router(conversions.router, tags=["conversions"])
app.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])

# only /health talks to redis here, celery reaches it through its own broker connection
redis_client = None

@app.on_event("startup")
async def startup():
    await init_models()
    global redis_client
    redis_client = aioredis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
    logger.info("Click tracker started")

@app.on_event("shutdown")
async def shutdown():
    if redis_client is not None:
        await redis_client.aclose()
    await dispose_engine()

@app.get("/health", tags=["health"])
async def health(db: AsyncSession = Depends(get_db)):
    checks = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error("Health check database failure: %s", e)
        checks["database"] = "disconnected"
    if redis_client is None:
        checks["redis"] = "not_configured"
    else:
        try:
            await redis_client.ping()
            checks["redis"] = "connected"
        except (RedisError, OSError) as e:
            logger.warning("Health check redis failure: %s", e)
            checks["redis"] = "disconnected"
    healthy = checks["database"] == "connected"
    body = {"status": "OK" if healthy else "DEGRADED", **checks, "timestamp": datetime.utcnow().isoformat()}
    return JSONResponse(status_code=200 if healthy else 503, content=body)

# carries the catch-all /{code} redirect, so it goes last
app.include_router(links.router, tags=["links"])
