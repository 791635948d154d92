"""
Per-school risk rule settings, created on first access and cached
"""
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..database.repositories import SettingsRepository
from ..models.settings import RiskRuleSettings
from .cache import TTLCache, get_settings_cache
from .exceptions import RecordValidationError
from .metrics import settings_cache_events_total

logger = logging.getLogger(__name__)


class RiskSettingsProvider:
    """Reads and updates RiskRuleSettings through the settings cache"""

    def __init__(self, db_session: Session, cache: Optional[TTLCache] = None):
        self.repository = SettingsRepository(db_session)
        self.cache = cache if cache is not None else get_settings_cache()

    def get_rules(self, school_id: str) -> RiskRuleSettings:
        """
        Rules of a school. A school without settings gets a row with the
        documented defaults; malformed stored categories fall back to defaults.
        """
        cached = self.cache.get(school_id)
        if cached is not None:
            settings_cache_events_total.labels(result="hit").inc()
            return cached

        settings_cache_events_total.labels(result="miss").inc()
        row = self.repository.get_or_create(school_id, default_rules=RiskRuleSettings().to_document())
        rules = RiskRuleSettings.from_document(row.rules, school_id=school_id)
        self.cache.set(school_id, rules)
        return rules

    def update_rules(
        self,
        school_id: str,
        changes: Dict[str, Any],
        updated_by: Optional[str] = None
    ) -> RiskRuleSettings:
        """
        Replace whole categories of a school's rules.

        Args:
            school_id: School to update
            changes: {category: rules} for the categories to replace
            updated_by: Actor id

        Raises:
            RecordValidationError: If the resulting document is invalid
        """
        unknown = set(changes) - set(RiskRuleSettings.model_fields)
        if unknown:
            raise RecordValidationError("Unknown risk rule categories", {"categories": sorted(unknown)})

        document = self.get_rules(school_id).to_document()
        document.update(changes)
        try:
            rules = RiskRuleSettings.model_validate(document)
        except ValidationError as e:
            raise RecordValidationError("Invalid risk rules", {"errors": e.errors(include_url=False, include_context=False)})

        self.repository.update(school_id, rules.to_document(), updated_by=updated_by)
        self.cache.invalidate(school_id)
        return rules
