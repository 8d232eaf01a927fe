from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from goldmarket.core.deps import get_db
from goldmarket.db.dal import Database

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", summary="Service and database liveness")
async def health(db: Database = Depends(get_db)):
    if db.ping():
        return {"status": "active", "dbState": "connected"}
    return JSONResponse(
        status_code=500, content={"status": "active", "dbState": "disconnected"}
    )
