from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from invoicing.errors import NotFoundError
from invoicing.models.common import utcnow
from invoicing.models.product import Product
from invoicing.services.common import build, hydrate, merge
from invoicing.settings import Settings, load_settings
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


def _normalize(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Accept "18,50" style prices from form inputs."""
    out = dict(payload)
    for k in ("price", "quantity"):
        v = out.get(k)
        if isinstance(v, str):
            out[k] = v.strip().replace(",", ".")
    return out


class ProductService:
    """Product catalog, one list per owner."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        self.repo = JsonRepository(
            Path(self.settings.data_dir) / "products.json",
            entity_name="product",
            key="id",
            backup_keep=self.settings.backup_keep,
        )

    def list_products(self, owner_id: str) -> List[Product]:
        return hydrate(Product, self.repo.find(lambda d: d.get("owner_id") == owner_id))

    def get_product(self, product_id: str) -> Product:
        row = self.repo.get_by_id(product_id)
        if row is None:
            raise NotFoundError(f"Product {product_id} not found")
        return Product.model_validate(row)

    def add_product(self, owner_id: str, data: Mapping[str, Any]) -> Product:
        product = build(Product, {**_normalize(data), "owner_id": owner_id}, "product")
        self.repo.add(product)
        logger.info("Product %s added for owner %s", product.id, owner_id)
        return product

    def update_product(self, product_id: str, changes: Mapping[str, Any]) -> Product:
        current = self.get_product(product_id)
        product = build(Product, {**merge(current, _normalize(changes)), "updated_at": utcnow()}, "product")
        self.repo.update(product)
        return product

    def delete_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        self.repo.delete(product_id)
        logger.info("Product %s deleted", product_id)
        return product
