# backend/app/api/v1/api.py
"""
Homestay Calendar API Router
- Calendar: 달력, Airbnb iCal 연동/동기화, 차단, 가용성, iCal 피드
- Bookings: 웹사이트 예약
- Scheduler: 동기화 스케줄러 상태/수동 실행
"""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from app.api.v1 import bookings, calendar

api_router = APIRouter()

# ✅ Calendar (Airbnb iCal 동기화 포함)
api_router.include_router(calendar.router)

# ✅ Bookings (웹사이트 예약)
api_router.include_router(bookings.router)


# ============================================================
# Scheduler API (관리용)
# ============================================================

class SchedulerStatusResponse(BaseModel):
    running: bool
    interval_minutes: Optional[int] = None
    sync_in_progress: bool = False
    jobs: list[dict[str, Any]] = []
    last_sync_timestamps: dict[str, str] = {}
    last_result: Optional[dict[str, Any]] = None


@api_router.get("/scheduler/status", response_model=SchedulerStatusResponse, tags=["Scheduler"])
def get_scheduler_status(request: Request):
    """스케줄러 상태 조회"""
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        return SchedulerStatusResponse(running=False)
    return SchedulerStatusResponse(**scheduler.status())


@api_router.post("/scheduler/run-now", tags=["Scheduler"])
async def run_scheduler_now(request: Request):
    """동기화 즉시 실행 (전체 객실)"""
    scheduler = getattr(request.app.state, "sync_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Sync scheduler not initialized")

    result = await scheduler.run_now()
    if result is None:
        raise HTTPException(status_code=409, detail="Sync already in progress")
    return {"status": "ok", "message": "Sync completed", **result.to_dict()}
