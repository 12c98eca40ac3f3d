from typing import List

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..auth import Principal, get_current_principal
from ..container import Container
from .deps import get_container

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[schemas.NotificationOut])
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    container: Container = Depends(get_container),
):
    return [schemas.NotificationOut.model_validate(n) for n in container.notifications.for_user(principal.user_id, limit)]
