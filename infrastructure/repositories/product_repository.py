"""
商品仓储实现
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.catalog.entity import Product
from domain.catalog.repository import ProductRepository
from infrastructure.models.product import ProductModel


class SQLAlchemyProductRepository(ProductRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductModel) -> Product:
        return Product(
            id=model.id,
            seller_id=model.seller_id,
            title=model.title,
            price=int(model.price),
            created_at=model.created_at,
        )

    async def create(self, product: Product) -> Product:
        db_product = ProductModel(
            id=product.id,
            seller_id=product.seller_id,
            title=product.title,
            price=product.price,
            created_at=product.created_at,
        )
        self.session.add(db_product)
        await self.session.flush()
        return self._to_entity(db_product)

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self.session.execute(select(ProductModel).where(ProductModel.id == product_id))
        db_product = result.scalar_one_or_none()
        return self._to_entity(db_product) if db_product else None
