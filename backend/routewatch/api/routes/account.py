"""Account: today's quota."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from routewatch.api.deps import get_clock, get_user_id
from routewatch.core.clock import Clock
from routewatch.db.session import get_db
from routewatch.services.monitoring.quota import get_quota_status

router = APIRouter()


@router.get("/account/quota")
def account_quota(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    clock: Clock = Depends(get_clock),
) -> dict:
    """Usage for the current UTC day; resets at the next UTC midnight."""
    return get_quota_status(db, user_id, clock.now_utc()).to_dict()
