"""Product Service: the products that own voting sessions."""

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Product, VotingSession
from .errors import InvalidRequest, NotFound, PersistenceFailure

logger = logging.getLogger(__name__)

_COLOR_HEX = re.compile(r"^#[0-9A-Fa-f]{6}$")


class ProductService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_products(self, product_ids: frozenset[UUID] | None = None) -> Sequence[Product]:
        """All products, or only ``product_ids`` when given."""
        query = select(Product).order_by(Product.name)
        if product_ids is not None:
            if not product_ids:
                return []
            query = query.where(Product.id.in_(product_ids))
        result = await self.session.execute(query)
        return result.scalars().all()

    async def get(self, product_id: UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise NotFound("product", product_id)
        return product

    async def create(self, name: str, color_hex: str | None = None) -> Product:
        name = self._clean_name(name)
        await self._ensure_unique(name)
        product = Product(name=name, color_hex=self._clean_color(color_hex))
        self.session.add(product)
        await self._flush("create product")
        logger.info(f"Created product {product.id} ({name})")
        return product

    async def update(self, product_id: UUID, changes: Mapping[str, Any]) -> Product:
        product = await self.get(product_id)
        unknown = set(changes) - {"name", "color_hex"}
        if unknown:
            raise InvalidRequest(f"Unknown product fields: {', '.join(sorted(unknown))}")

        if "name" in changes:
            name = self._clean_name(changes["name"])
            if name != product.name:
                await self._ensure_unique(name)
            product.name = name
        if "color_hex" in changes:
            product.color_hex = self._clean_color(changes["color_hex"])

        await self._flush("update product")
        logger.info(f"Updated product {product_id}")
        return product

    async def delete(self, product_id: UUID) -> None:
        """Delete a product that no session references any more."""
        product = await self.get(product_id)
        result = await self.session.execute(
            select(func.count(VotingSession.id)).where(VotingSession.product_id == product_id)
        )
        session_count = result.scalar_one()
        if session_count:
            raise InvalidRequest(
                f"Cannot delete product {product.name}: "
                f"{session_count} voting session(s) still reference it"
            )

        await self.session.delete(product)
        await self._flush("delete product")
        logger.info(f"Deleted product {product_id} ({product.name})")

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    @staticmethod
    def _clean_name(name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidRequest("Product name is required")
        return name

    @staticmethod
    def _clean_color(color_hex: str | None) -> str | None:
        if not color_hex:
            return None
        if not _COLOR_HEX.match(color_hex):
            raise InvalidRequest(f"Invalid color {color_hex!r}; expected #RRGGBB")
        return color_hex.upper()

    async def _ensure_unique(self, name: str) -> None:
        result = await self.session.execute(
            select(Product.id).where(func.lower(Product.name) == name.lower())
        )
        if result.first() is not None:
            raise InvalidRequest(f"A product named {name!r} already exists")

    async def _flush(self, action: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceFailure(str(e)) from e
