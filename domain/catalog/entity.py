"""
商品实体 - 结账时只读
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from domain.common.clock import ensure_utc


@dataclass
class Product:
    id: str
    seller_id: str
    title: str
    price: int  # minor units
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)
