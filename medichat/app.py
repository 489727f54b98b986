"""
MediChat Intake Server: Application Factory
"""

import time
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medichat import settings

# ── 1. Configure logging ──
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("medichat-server")

_startup_time = time.time()
logger.info("Server initialization started...")

# ── 2. Create FastAPI app ──
app = FastAPI(title="MediChat Intake Server")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── 3. Register routers ──
from medichat.routers import health, intake_api

app.include_router(health.router)
app.include_router(intake_api.router)


# ── 4. Startup / shutdown ──
@app.on_event("startup")
async def startup_event():
    logger.info("=" * 60)
    logger.info("MediChat Intake Server Starting")
    logger.info("Listening on port: %s", settings.PORT)

    from medichat.intake.setup import get_orchestrator, initialize_intake

    # Tests wire their own engine before the app starts
    if get_orchestrator() is None:
        try:
            await initialize_intake()
        except Exception as e:
            logger.error("Intake engine failed to start: %s", e, exc_info=True)

    logger.info("Total init time: %.2fs", time.time() - _startup_time)
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    from medichat.intake.setup import shutdown_intake

    await shutdown_intake()
