"""
订单/退款仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from domain.common.exceptions import ConcurrentUpdate, OrderNotFoundException
from domain.order.entity import Order, OrderStatus, Refund, RefundStatus
from domain.order.repository import OrderRepository, RefundRepository
from infrastructure.models.order import OrderModel, RefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            buyer_id=model.buyer_id,
            seller_id=model.seller_id,
            product_id=model.product_id,
            amount=int(model.amount),
            status=OrderStatus(model.status),
            checkout_session_id=model.checkout_session_id,
            payment_url=model.payment_url,
            refund_id=model.refund_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            buyer_id=entity.buyer_id,
            seller_id=entity.seller_id,
            product_id=entity.product_id,
            amount=entity.amount,
            status=entity.status.value,
            checkout_session_id=entity.checkout_session_id,
            payment_url=entity.payment_url,
            refund_id=entity.refund_id,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, order: Order) -> Order:
        """创建订单"""
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        logger.info(
            "order_created",
            order_id=db_order.id,
            buyer_id=db_order.buyer_id,
            seller_id=db_order.seller_id,
            amount=db_order.amount,
        )
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: str, *, for_update: bool = False) -> Optional[Order]:
        """根据ID获取订单"""
        query = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def _reload(self, order_id: str) -> Order:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        if db_order is None:
            raise OrderNotFoundException(order_id)
        return self._to_entity(db_order)

    async def attach_checkout_session(
        self,
        order_id: str,
        session_id: str,
        payment_url: Optional[str],
    ) -> Order:
        """只在订单仍为 PENDING 且没有会话时设置"""
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == OrderStatus.PENDING.value,
                OrderModel.checkout_session_id.is_(None),
            )
            .values(
                checkout_session_id=session_id,
                payment_url=payment_url,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if await self.get_by_id(order_id) is None:
                raise OrderNotFoundException(order_id)
            logger.warning("order_session_attach_conflict", order_id=order_id, session_id=session_id)
            raise ConcurrentUpdate("order", order_id, "PENDING without session")
        logger.info("order_session_attached", order_id=order_id, session_id=session_id)
        return await self._reload(order_id)

    async def compare_and_set_status(
        self,
        order_id: str,
        expected: OrderStatus,
        target: OrderStatus,
        *,
        refund_id: Optional[str] = None,
    ) -> Order:
        values = {"status": target.value, "updated_at": datetime.now(timezone.utc)}
        if refund_id is not None:
            values["refund_id"] = refund_id
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.get_by_id(order_id)
            if current is None:
                raise OrderNotFoundException(order_id)
            logger.warning(
                "order_status_conflict",
                order_id=order_id,
                expected=expected.value,
                actual=current.status.value,
                target=target.value,
            )
            raise ConcurrentUpdate("order", order_id, expected.value)
        logger.info(
            "order_status_changed",
            order_id=order_id,
            previous=expected.value,
            status=target.value,
        )
        return await self._reload(order_id)

    async def list_by_buyer(self, buyer_id: str, skip: int = 0, limit: int = 100) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.buyer_id == buyer_id)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]

    async def list_by_seller(self, seller_id: str, skip: int = 0, limit: int = 100) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.seller_id == seller_id)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        """将数据库模型转换为领域实体"""
        return Refund(
            id=model.id,
            order_id=model.order_id,
            amount=int(model.amount),
            status=RefundStatus(model.status),
            gateway_refund_id=model.gateway_refund_id,
            reason=model.reason,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            attempts=model.attempts,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: Refund) -> RefundModel:
        """将领域实体转换为数据库模型"""
        return RefundModel(
            id=entity.id,
            order_id=entity.order_id,
            amount=entity.amount,
            status=entity.status.value,
            gateway_refund_id=entity.gateway_refund_id,
            reason=entity.reason,
            failure_reason=entity.failure_reason,
            attempts=entity.attempts,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            extra_metadata=entity.metadata,
        )

    async def create(self, refund: Refund) -> Refund:
        """创建退款记录

        order_id 唯一约束冲突以 IntegrityError 形式交由调用方处理
        """
        db_refund = self._to_model(refund)
        self.session.add(db_refund)
        await self.session.flush()
        logger.info(
            "refund_created",
            refund_id=db_refund.id,
            order_id=db_refund.order_id,
            amount=db_refund.amount,
        )
        return self._to_entity(db_refund)

    async def get_by_order_id(self, order_id: str, *, for_update: bool = False) -> Optional[Refund]:
        query = select(RefundModel).where(RefundModel.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def get_by_gateway_refund_id(self, gateway_refund_id: str, *, for_update: bool = False) -> Optional[Refund]:
        query = select(RefundModel).where(RefundModel.gateway_refund_id == gateway_refund_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def update(self, refund: Refund) -> Refund:
        """更新退款记录"""
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.id == refund.id)
        )
        db_refund = result.scalar_one_or_none()

        if not db_refund:
            raise ValueError(f"Refund with id {refund.id} not found")

        db_refund.status = refund.status.value
        db_refund.gateway_refund_id = refund.gateway_refund_id
        db_refund.failure_reason = refund.failure_reason
        db_refund.attempts = refund.attempts
        db_refund.updated_at = refund.updated_at
        db_refund.extra_metadata = refund.metadata

        await self.session.flush()

        logger.info(
            "refund_updated",
            refund_id=db_refund.id,
            order_id=db_refund.order_id,
            status=db_refund.status,
        )
        return self._to_entity(db_refund)
