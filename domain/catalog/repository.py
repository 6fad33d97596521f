"""
商品仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Product


class ProductRepository(ABC):

    @abstractmethod
    async def create(self, product: Product) -> Product:
        pass

    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass
