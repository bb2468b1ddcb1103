"""Server-side plant clock."""
from fastapi import APIRouter, Depends

from hydrolog.core.config import settings
from hydrolog.logbook.clock import current_hour, next_session, operational_date, session_window
from hydrolog.routes.deps import get_clock

router = APIRouter(prefix="/clock", tags=["clock"])


@router.get("")
async def plant_clock(clock=Depends(get_clock)):
    """Current plant hour, open checklist session and the next session."""
    now = clock()
    window = session_window(now)
    upcoming = next_session(now)
    return {
        "now": now.isoformat(),
        "timezone": settings.plant_timezone,
        "date": operational_date(now).isoformat(),
        "current_hour": current_hour(now),
        "session": {
            "number": window.session,
            "date": window.day.isoformat(),
            "opens": window.opens.isoformat(),
            "closes": window.closes.isoformat(),
        } if window else None,
        "next_session": {"number": upcoming.session, "at": upcoming.at.isoformat(), "label": upcoming.label},
    }
