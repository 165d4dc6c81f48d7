from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.config import Settings, get_settings
from app.schemas.statistics import ActiveUserStatisticsOut
from app.services.repository import (
    RepositoryQueryError,
    RepositoryTimeoutError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()


@router.get("/active-users", response_model=list[ActiveUserStatisticsOut])
async def list_active_user_statistics(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ActiveUserStatisticsOut]:
    try:
        rows = await repository.list_active_user_statistics(
            settings.materialized_view_name,
            limit=limit,
            offset=offset,
        )
    except (RepositoryUnavailableError, RepositoryTimeoutError) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryQueryError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return [ActiveUserStatisticsOut(**row) for row in rows]
