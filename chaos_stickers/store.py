# store.py
"""
Persistence operations used by the fulfillment workflow and the order routes.

Each method runs in its own short session/transaction. Nothing here is held
open across vendor calls. Every SQLAlchemy failure is re-raised as
`StorageError`.
"""
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fastapi import Depends
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from .db import get_session_factory
from .errors import ConfigurationError, StorageError
from .models import Customer, GeneratedImage, Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)

# Driver-level failures SQLAlchemy does not wrap, e.g. sqlite3 refusing an
# integer wider than 64 bits.
_STORAGE_ERRORS = (SQLAlchemyError, OverflowError)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@contextmanager
def _storage_errors(action: str):
    try:
        yield
    except _STORAGE_ERRORS as e:
        logger.error(f"Storage failure while trying to {action}: {e}")
        raise StorageError(f"Database error while trying to {action}: {e}")


def _order_query():
    return select(Order).options(selectinload(Order.items))


class OrderStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # --- Orders ---

    async def find_order_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        with _storage_errors("look up order by payment reference"):
            async with self.session_factory() as session:
                result = await session.execute(
                    _order_query().where(Order.stripe_payment_id == payment_reference)
                )
                return result.scalar_one_or_none()

    async def get_order(self, order_id: int) -> Optional[Order]:
        with _storage_errors(f"load order {order_id}"):
            async with self.session_factory() as session:
                result = await session.execute(_order_query().where(Order.id == order_id))
                return result.scalar_one_or_none()

    async def find_order_by_vendor_id(self, printify_order_id: str) -> Optional[Order]:
        with _storage_errors("look up order by Printify id"):
            async with self.session_factory() as session:
                result = await session.execute(
                    _order_query().where(Order.printify_order_id == printify_order_id)
                )
                return result.scalars().first()

    async def create_order(
        self,
        customer_id: int,
        payment_reference: str,
        printify_order_id: str,
        shipping: Dict[str, Optional[str]],
        items: Sequence[OrderItem],
    ) -> Tuple[Order, bool]:
        """
        Writes the order, its items and the shipping snapshot in one commit.

        Returns `(order, created)`. When another delivery of the same payment
        already committed its order, the unique constraint on the payment
        reference rejects this insert and the existing order is returned with
        `created=False`.
        """
        order = Order(
            customer_id=customer_id,
            stripe_payment_id=payment_reference,
            status=OrderStatus.PENDING.value,
            shipping_first_name=shipping["first_name"],
            shipping_last_name=shipping["last_name"],
            shipping_email=shipping["email"],
            shipping_phone=shipping["phone"],
            shipping_country=shipping["country"],
            shipping_region=shipping["region"],
            shipping_address1=shipping["address1"],
            shipping_address2=shipping["address2"],
            shipping_city=shipping["city"],
            shipping_zip=shipping["zip"],
            items=list(items),
        )
        order.mark_submitted(printify_order_id)

        try:
            async with self.session_factory() as session:
                session.add(order)
                await session.commit()
            return order, True
        except IntegrityError as e:
            logger.warning(f"Order insert for {payment_reference} hit a constraint: {e.orig}")
            existing = await self.find_order_by_payment_reference(payment_reference)
            if existing is not None:
                return existing, False
            raise StorageError(f"Database error while trying to save order: {e.orig}")
        except _STORAGE_ERRORS as e:
            logger.error(f"Storage failure while trying to save order for {payment_reference}: {e}")
            raise StorageError(f"Database error while trying to save order: {e}")

    async def apply_status(self, order_id: int, new_status: OrderStatus) -> Tuple[Optional[Order], bool]:
        """Moves an order to `new_status` if the transition is allowed. Returns `(order, changed)`."""
        with _storage_errors(f"update status of order {order_id}"):
            async with self.session_factory() as session:
                result = await session.execute(
                    _order_query().where(Order.id == order_id).with_for_update()
                )
                order = result.scalar_one_or_none()
                if order is None:
                    return None, False
                changed = order.transition_to(new_status)
                if changed:
                    await session.commit()
                return order, changed

    # --- Customers ---

    async def upsert_customer(self, email: str, name: str) -> int:
        """
        Finds-or-creates the customer keyed by `email` and refreshes its name
        in one `INSERT ... ON CONFLICT DO UPDATE` statement.
        """
        with _storage_errors(f"find or create customer {email}"):
            async with self.session_factory() as session:
                dialect = session.get_bind().dialect.name
                insert = _UPSERT_INSERTS.get(dialect)
                if insert is None:
                    raise ConfigurationError(f"Customer upsert is not supported on {dialect}.")
                stmt = insert(Customer).values(email=email, name=name)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Customer.email],
                    set_={"name": stmt.excluded.name, "updated_at": func.now()},
                ).returning(Customer.id)
                customer_id = (await session.execute(stmt)).scalar_one()
                await session.commit()
                return customer_id

    # --- Generated images ---

    async def fetch_generated_images(self, image_ids: Iterable[int]) -> Dict[int, GeneratedImage]:
        ids = sorted(set(image_ids))
        with _storage_errors("load generated images"):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(GeneratedImage).where(GeneratedImage.id.in_(ids))
                )
                return {image.id: image for image in result.scalars()}

    async def recent_images(self, page: int, limit: int) -> Tuple[List[GeneratedImage], int]:
        with _storage_errors("list recent designs"):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(GeneratedImage)
                    .order_by(GeneratedImage.created_at.desc(), GeneratedImage.id.asc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                images = list(result.scalars())
                total = await session.scalar(select(func.count()).select_from(GeneratedImage))
                return images, total or 0

    async def purchased_image_urls(self, email: str) -> List[str]:
        """Distinct image URLs across all orders of a customer, most recent order first."""
        with _storage_errors(f"list purchased designs for {email}"):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(OrderItem.image_url)
                    .join(Order, OrderItem.order_id == Order.id)
                    .join(Customer, Order.customer_id == Customer.id)
                    .where(Customer.email == email)
                    .order_by(Order.created_at.desc(), Order.id.desc(), OrderItem.id.asc())
                )
                return list(dict.fromkeys(result.scalars()))


def get_order_store(session_factory: async_sessionmaker = Depends(get_session_factory)) -> OrderStore:
    """FastAPI dependency providing the order store."""
    return OrderStore(session_factory)
