import time
from datetime import datetime

from fastapi import APIRouter

from photo_api import __version__

router = APIRouter(tags=["ops"])

# Store startup time for uptime calculation
startup_time = time.time()


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "version": __version__,
        "uptime_seconds": round(time.time() - startup_time, 2),
        "timestamp": datetime.now().isoformat(),
    }
