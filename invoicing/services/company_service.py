from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from invoicing.errors import NotFoundError
from invoicing.models.common import utcnow
from invoicing.models.party import Company
from invoicing.services.common import build
from invoicing.settings import Settings, load_settings
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class CompanyService:
    """The issuing company: exactly one per owner."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        self.repo = JsonRepository(
            Path(self.settings.data_dir) / "companies.json",
            entity_name="company",
            key="owner_id",
            backup_keep=self.settings.backup_keep,
        )

    def get_company(self, owner_id: str) -> Company:
        row = self.repo.get_by_id(owner_id)
        if row is None:
            raise NotFoundError("No company found for this user")
        return Company.model_validate(row)

    def save_company(
        self, owner_id: str, data: Mapping[str, Any], delete_logo: bool = False
    ) -> Tuple[Company, bool]:
        """Create or update the owner's company. Returns ``(company, created)``."""
        payload = {k: data.get(k) for k in ("name", "email", "phone", "address") if k in data}
        if data.get("logo"):
            payload["logo"] = data["logo"]
        if delete_logo:
            payload["logo"] = None

        with self.repo.lock:
            existing = self.repo.get_by_id(owner_id)
            if existing is None:
                company = build(Company, {**payload, "owner_id": owner_id}, "company")
                self.repo.add(company)
                logger.info("Company added for owner %s", owner_id)
                return company, True

            company = build(Company, {**existing, **payload, "owner_id": owner_id, "updated_at": utcnow()}, "company")
            self.repo.update(company)
            logger.info("Company updated for owner %s", owner_id)
            return company, False

    def delete_company(self, owner_id: str) -> Company:
        company = self.get_company(owner_id)
        self.repo.delete(owner_id)
        logger.info("Company deleted for owner %s", owner_id)
        return company
