from fastapi import HTTPException, Request, status

from rewardflow_api.services.conditions import ConditionEngine


def get_condition_engine(request: Request) -> ConditionEngine:
    """Engine built by the application lifespan and held on ``app.state``."""

    engine = getattr(request.app.state, "condition_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Condition engine is not ready",
        )
    return engine
