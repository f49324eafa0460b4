from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional

from invoicing.errors import NotFoundError
from invoicing.models.party import Customer
from invoicing.models.common import utcnow
from invoicing.services.common import build, hydrate, merge
from invoicing.settings import Settings, load_settings
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        self.repo = JsonRepository(
            Path(self.settings.data_dir) / "customers.json",
            entity_name="customer",
            key="id",
            backup_keep=self.settings.backup_keep,
        )

    def list_customers(self, owner_id: str) -> List[Customer]:
        return hydrate(Customer, self.repo.find(lambda d: d.get("owner_id") == owner_id))

    def get_customer(self, customer_id: str) -> Customer:
        row = self.repo.get_by_id(customer_id)
        if row is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        return Customer.model_validate(row)

    def add_customer(self, owner_id: str, data: Mapping[str, Any]) -> Customer:
        customer = build(Customer, {**data, "owner_id": owner_id}, "customer")
        self.repo.add(customer)
        logger.info("Customer %s added for owner %s", customer.id, owner_id)
        return customer

    def update_customer(self, customer_id: str, changes: Mapping[str, Any]) -> Customer:
        current = self.get_customer(customer_id)
        customer = build(Customer, {**merge(current, changes), "updated_at": utcnow()}, "customer")
        self.repo.update(customer)
        return customer

    def delete_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        self.repo.delete(customer_id)
        logger.info("Customer %s deleted", customer_id)
        return customer
