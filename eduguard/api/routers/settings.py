"""
Router for per-school risk rule settings
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from ...core.exceptions import SchoolNotFoundError
from ...core.settings_provider import RiskSettingsProvider
from ...database.repositories import SchoolRepository
from ...models.settings import RiskRuleSettings
from ..deps import get_actor_id, get_school_repository, get_settings_provider
from ..schemas.common import APIResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schools/{school_id}/risk-settings", tags=["Risk Settings"])


@router.get(
    "",
    response_model=APIResponse[RiskRuleSettings],
    summary="Get risk rules",
    description="Created with the default thresholds on first access"
)
def get_risk_settings(
    school_id: str,
    provider: RiskSettingsProvider = Depends(get_settings_provider),
    schools: SchoolRepository = Depends(get_school_repository),
):
    if not schools.exists(school_id):
        raise SchoolNotFoundError(school_id)
    return APIResponse(data=provider.get_rules(school_id))


@router.put(
    "",
    response_model=APIResponse[RiskRuleSettings],
    summary="Update risk rules",
    description="Replaces the given categories (attendance, performance, socioeconomic, combined)"
)
def update_risk_settings(
    school_id: str,
    changes: Dict[str, Any] = Body(..., examples=[{"combined": {"enabled": False}}]),
    provider: RiskSettingsProvider = Depends(get_settings_provider),
    schools: SchoolRepository = Depends(get_school_repository),
    actor_id: str = Depends(get_actor_id),
):
    if not schools.exists(school_id):
        raise SchoolNotFoundError(school_id)
    rules = provider.update_rules(school_id, changes, updated_by=actor_id)
    logger.info("Risk rules updated", extra={"school_id": school_id, "categories": sorted(changes)})
    return APIResponse(data=rules, message="Risk rules updated")
