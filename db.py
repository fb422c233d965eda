#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Database management and persistence layer for the commerce server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so the hook
  dispatcher and request handlers can read while another writer is active.
- Declarative Models: Defines tables for users, addresses, orders, line items,
  order notes, downloads, payment transactions and webhooks.
- Data Access Helpers: Asynchronous functions for the queries the services
  run, including pagination and the conditional update that claims an order
  for a single payment.

All timestamps are stored as naive UTC datetimes.
"""

import datetime
import logging
from typing import Any, Dict, Iterable, List, NamedTuple, Optional
import uuid

from enums import FulfillmentState
from enums import OrderState
from enums import PaymentState
from enums import TransactionStatus
from enums import TransactionType
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import delete
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

# Longest time a connection waits for the SQLite write lock.
BUSY_TIMEOUT_SECONDS = 30.0

DEFAULT_PER_PAGE = 50


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def new_id() -> str:
  return str(uuid.uuid4())


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(
      self, db_path: str, busy_timeout: float = BUSY_TIMEOUT_SECONDS
  ) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{db_path}"
    self.engine = create_async_engine(
        url, echo=False, connect_args={"timeout": busy_timeout}
    )

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready at %s", db_path)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


class User(Base):
  __tablename__ = "users"

  id = Column(String, primary_key=True)
  email = Column(String, index=True)
  created_at = Column(DateTime, default=utcnow)


class Address(Base):
  __tablename__ = "addresses"

  id = Column(String, primary_key=True, default=new_id)
  user_id = Column(String, index=True, nullable=True)
  name = Column(String)
  company = Column(String, nullable=True)
  address1 = Column(String)
  address2 = Column(String, nullable=True)
  city = Column(String)
  country = Column(String)
  state = Column(String, nullable=True)
  zip = Column(String)
  created_at = Column(DateTime, default=utcnow)
  deleted_at = Column(DateTime, nullable=True)


class TaxableItem:
  """A part of a line item taxed at its own rate, e.g. the ebook in a bundle."""

  def __init__(self, price: int, product_type: str):
    self.price = price
    self.type = product_type
    self.quantity = 1

  def product_sku(self) -> str:
    return ""

  def price_in_lowest_unit(self) -> int:
    return self.price

  def product_type(self) -> str:
    return self.type

  def fixed_vat(self) -> int:
    return 0

  def taxable_items(self) -> List["TaxableItem"]:
    return []


class LineItem(Base):
  __tablename__ = "line_items"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  position = Column(Integer, default=0)
  title = Column(String)
  sku = Column(String, index=True)
  type = Column(String)
  description = Column(Text, nullable=True)
  path = Column(String)
  price = Column(Integer)  # Unit price in lowest currency unit
  vat = Column(Integer, default=0)  # Fixed VAT percentage
  quantity = Column(Integer, default=1)
  taxable_items_data = Column("taxable_items", JSON, nullable=True)
  calculation = Column(JSON, nullable=True)

  order = relationship("Order", back_populates="line_items")

  def product_sku(self) -> str:
    return self.sku or ""

  def price_in_lowest_unit(self) -> int:
    return self.price or 0

  def product_type(self) -> str:
    return self.type or ""

  def fixed_vat(self) -> int:
    return self.vat or 0

  def taxable_items(self) -> List[TaxableItem]:
    return [
        TaxableItem(entry["price"], entry.get("type", ""))
        for entry in self.taxable_items_data or []
    ]


class OrderNote(Base):
  __tablename__ = "order_notes"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  user_id = Column(String, nullable=True)
  text = Column(Text)
  created_at = Column(DateTime, default=utcnow)

  order = relationship("Order", back_populates="notes")


class Order(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True, default=new_id)
  user_id = Column(String, index=True, nullable=True)
  email = Column(String, index=True)
  session_id = Column(String, nullable=True)
  currency = Column(String)
  subtotal = Column(Integer, default=0)
  taxes = Column(Integer, default=0)
  discount = Column(Integer, default=0)
  total = Column(Integer, default=0)
  payment_state = Column(String, default=PaymentState.PENDING.value)
  fulfillment_state = Column(String, default=FulfillmentState.PENDING.value)
  state = Column(String, default=OrderState.PENDING.value)
  payment_processor = Column(String, nullable=True)
  coupon_code = Column(String, nullable=True)
  coupon = Column(JSON, nullable=True)
  vat_number = Column(String, nullable=True)
  meta = Column(JSON, nullable=True)
  shipping_address_id = Column(String, ForeignKey("addresses.id"))
  billing_address_id = Column(String, ForeignKey("addresses.id"))
  created_at = Column(DateTime, default=utcnow, index=True)
  updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

  line_items = relationship(
      "LineItem",
      back_populates="order",
      cascade="all, delete-orphan",
      order_by="LineItem.position",
      lazy="selectin",
  )
  notes = relationship(
      "OrderNote",
      back_populates="order",
      cascade="all, delete-orphan",
      lazy="selectin",
  )
  downloads = relationship(
      "Download",
      back_populates="order",
      cascade="all, delete-orphan",
      lazy="selectin",
  )
  shipping_address = relationship(
      "Address", foreign_keys=[shipping_address_id], lazy="selectin"
  )
  billing_address = relationship(
      "Address", foreign_keys=[billing_address_id], lazy="selectin"
  )


class Download(Base):
  """A file unlocked by paying for a line item."""

  __tablename__ = "downloads"

  id = Column(String, primary_key=True, default=new_id)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  line_item_id = Column(Integer, ForeignKey("line_items.id"), nullable=True)
  title = Column(String)
  format = Column(String, nullable=True)
  url = Column(String)
  download_count = Column(Integer, default=0)
  created_at = Column(DateTime, default=utcnow)

  order = relationship("Order", back_populates="downloads")
  line_item = relationship("LineItem")


class DownloadEvent(Base):
  __tablename__ = "download_events"

  id = Column(Integer, primary_key=True, autoincrement=True)
  download_id = Column(String, index=True)
  order_id = Column(String, index=True)
  user_id = Column(String, nullable=True)
  ip = Column(String)
  created_at = Column(DateTime, default=utcnow, index=True)


class Transaction(Base):
  __tablename__ = "transactions"

  id = Column(String, primary_key=True, default=new_id)
  # Plain columns so the audit trail survives the order.
  order_id = Column(String, index=True)
  user_id = Column(String, index=True, nullable=True)
  processor_id = Column(String, nullable=True)
  amount = Column(Integer)
  amount_reversed = Column(Integer, default=0)
  currency = Column(String)
  failure_code = Column(String, nullable=True)
  failure_description = Column(Text, nullable=True)
  status = Column(String, default=TransactionStatus.PENDING.value)
  type = Column(String, default=TransactionType.CHARGE.value)
  created_at = Column(DateTime, default=utcnow, index=True)


class Hook(Base):
  __tablename__ = "hooks"

  id = Column(Integer, primary_key=True, autoincrement=True)
  user_id = Column(String, nullable=True)
  type = Column(String)
  done = Column(Boolean, default=False, index=True)
  failed = Column(Boolean, default=False)
  url = Column(String)
  payload = Column(Text)
  secret = Column(String, nullable=True)
  response_status = Column(Integer, nullable=True)
  response_headers = Column(Text, nullable=True)
  response_body = Column(Text, nullable=True)
  error_message = Column(Text, nullable=True)
  tries = Column(Integer, default=0)
  created_at = Column(DateTime, default=utcnow)
  run_after = Column(DateTime, nullable=True)
  locked_at = Column(DateTime, nullable=True)
  locked_by = Column(String, nullable=True)
  completed_at = Column(DateTime, nullable=True)


# --- Data Access Helpers ---


class Page(NamedTuple):
  """One page of a listing and the size of the whole listing."""

  items: List[Any]
  total: int


async def paginate(
    session: AsyncSession,
    stmt: Any,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Page:
  """Runs `stmt` for a single page and counts all of its rows."""
  total = await session.scalar(
      select(func.count()).select_from(stmt.order_by(None).subquery())
  )
  result = await session.execute(
      stmt.offset((page - 1) * per_page).limit(per_page)
  )
  return Page(list(result.scalars().all()), total or 0)


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order with its line items, notes and addresses."""
  return await session.get(Order, order_id)


async def claim_order_for_payment(session: AsyncSession, order_id: str) -> int:
  """Moves a pending order to `processing` for the payment about to run.

  The conditional update is the only way into `processing`, so of two
  concurrent payments only one matches the row. The caller commits the claim
  before charging and the write lock is released while the gateway works.

  Args:
    session: The database session to use.
    order_id: The order about to be charged.

  Returns:
    The number of matched rows, 0 if the order is missing, paid or already
    claimed by another payment.
  """
  stmt = (
      update(Order)
      .where(Order.id == order_id)
      .where(Order.payment_state == PaymentState.PENDING.value)
      .values(payment_state=PaymentState.PROCESSING.value, updated_at=utcnow())
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount


async def release_payment_claim(session: AsyncSession, order_id: str) -> None:
  """Returns an order claimed by a failed payment to `pending`."""
  await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .where(Order.payment_state == PaymentState.PROCESSING.value)
      .values(payment_state=PaymentState.PENDING.value, updated_at=utcnow())
      .execution_options(synchronize_session=False)
  )


async def list_orders(
    session: AsyncSession,
    user_id: Optional[str] = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Page:
  """Lists orders, newest first, optionally for a single user."""
  stmt = select(Order).order_by(Order.created_at.desc(), Order.id)
  if user_id is not None:
    stmt = stmt.where(Order.user_id == user_id)
  return await paginate(session, stmt, page, per_page)


async def get_user(session: AsyncSession, user_id: str) -> Optional[User]:
  return await session.get(User, user_id)


async def get_or_create_user(
    session: AsyncSession, user_id: str, email: Optional[str]
) -> User:
  """Returns the user with this id, creating it on first sight."""
  user = await session.get(User, user_id)
  if user is None:
    user = User(id=user_id, email=email)
    session.add(user)
    await session.flush()
  elif not user.email and email:
    user.email = email
  return user


async def list_users(
    session: AsyncSession,
    email: Optional[str] = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Page:
  stmt = select(User).order_by(User.created_at.desc(), User.id)
  if email:
    stmt = stmt.where(User.email == email)
  return await paginate(session, stmt, page, per_page)


async def count_orders_by_user(
    session: AsyncSession, user_ids: Iterable[str]
) -> Dict[str, int]:
  user_ids = list(user_ids)
  if not user_ids:
    return {}
  result = await session.execute(
      select(Order.user_id, func.count(Order.id))
      .where(Order.user_id.in_(user_ids))
      .group_by(Order.user_id)
  )
  return {user_id: count for user_id, count in result.all()}


async def delete_user(session: AsyncSession, user: User) -> None:
  """Deletes a user with their orders and addresses.

  Transactions and hooks are kept as the audit trail.
  """
  result = await session.execute(select(Order).where(Order.user_id == user.id))
  orders = list(result.scalars().all())
  order_ids = [order.id for order in orders]
  for order in orders:
    await session.delete(order)
  if order_ids:
    await session.execute(
        delete(DownloadEvent).where(DownloadEvent.order_id.in_(order_ids))
    )
  await session.flush()
  await session.execute(delete(Address).where(Address.user_id == user.id))
  await session.delete(user)


async def get_address(
    session: AsyncSession, address_id: str
) -> Optional[Address]:
  """Returns an address unless it was deleted."""
  address = await session.get(Address, address_id)
  if address is None or address.deleted_at is not None:
    return None
  return address


async def list_addresses(session: AsyncSession, user_id: str) -> List[Address]:
  result = await session.execute(
      select(Address)
      .where(Address.user_id == user_id)
      .where(Address.deleted_at.is_(None))
      .order_by(Address.created_at)
  )
  return list(result.scalars().all())


async def get_download(
    session: AsyncSession, download_id: str
) -> Optional[Download]:
  return await session.get(Download, download_id)


async def list_paid_downloads(
    session: AsyncSession,
    order_id: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Page:
  """Lists downloads of paid orders, for one order or one user."""
  stmt = (
      select(Download)
      .join(Order, Order.id == Download.order_id)
      .where(Order.payment_state == PaymentState.PAID.value)
      .order_by(Download.created_at, Download.id)
  )
  if order_id is not None:
    stmt = stmt.where(Order.id == order_id)
  if user_id is not None:
    stmt = stmt.where(Order.user_id == user_id)
  return await paginate(session, stmt, page, per_page)


async def count_download_ips(
    session: AsyncSession, order_id: str, since: datetime.datetime
) -> int:
  """Counts the distinct IPs that downloaded files of an order since `since`."""
  count = await session.scalar(
      select(func.count(func.distinct(DownloadEvent.ip)))
      .where(DownloadEvent.order_id == order_id)
      .where(DownloadEvent.created_at > since)
  )
  return count or 0


async def record_download(
    session: AsyncSession,
    download: Download,
    ip: str,
    user_id: Optional[str],
) -> None:
  """Bumps the download counter and logs the requesting IP."""
  await session.execute(
      update(Download)
      .where(Download.id == download.id)
      .values(download_count=Download.download_count + 1)
      .execution_options(synchronize_session=False)
  )
  session.add(
      DownloadEvent(
          download_id=download.id,
          order_id=download.order_id,
          user_id=user_id,
          ip=ip,
      )
  )


async def get_transaction(
    session: AsyncSession, transaction_id: str
) -> Optional[Transaction]:
  return await session.get(Transaction, transaction_id)


async def list_transactions(
    session: AsyncSession,
    order_id: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Page:
  """Lists transactions, newest first, filtered by order and/or user."""
  stmt = select(Transaction).order_by(
      Transaction.created_at.desc(), Transaction.id
  )
  if order_id is not None:
    stmt = stmt.where(Transaction.order_id == order_id)
  if user_id is not None:
    stmt = stmt.where(Transaction.user_id == user_id)
  return await paginate(session, stmt, page, per_page)


async def lease_hooks(
    session: AsyncSession,
    worker_id: str,
    now: datetime.datetime,
    lease_timeout: datetime.timedelta,
) -> List[Hook]:
  """Leases all due hooks to a worker and returns them.

  A hook is due when it is not done, its backoff has passed and it is either
  unlocked or its lease is older than `lease_timeout`.
  """
  stmt = (
      update(Hook)
      .where(Hook.done.is_(False))
      .where(
          or_(Hook.locked_at.is_(None), Hook.locked_at < now - lease_timeout)
      )
      .where(or_(Hook.run_after.is_(None), Hook.run_after <= now))
      .values(locked_at=now, locked_by=worker_id)
      .execution_options(synchronize_session=False)
  )
  await session.execute(stmt)
  result = await session.execute(
      select(Hook)
      .where(Hook.locked_by == worker_id)
      .where(Hook.locked_at == now)
      .where(Hook.done.is_(False))
      .order_by(Hook.id)
  )
  return list(result.scalars().all())


async def sales_report(
    session: AsyncSession,
    start: Optional[datetime.datetime] = None,
    end: Optional[datetime.datetime] = None,
) -> List[Dict[str, Any]]:
  """Sums totals, subtotals and taxes of paid orders per currency."""
  stmt = (
      select(
          func.sum(Order.total),
          func.sum(Order.subtotal),
          func.sum(Order.taxes),
          Order.currency,
      )
      .where(Order.payment_state == PaymentState.PAID.value)
      .group_by(Order.currency)
  )
  stmt = _filter_created(stmt, start, end)
  result = await session.execute(stmt)
  return [
      {
          "total": total or 0,
          "subtotal": subtotal or 0,
          "taxes": taxes or 0,
          "currency": currency,
      }
      for total, subtotal, taxes, currency in result.all()
  ]


async def products_report(
    session: AsyncSession,
    start: Optional[datetime.datetime] = None,
    end: Optional[datetime.datetime] = None,
) -> List[Dict[str, Any]]:
  """Sums sold amounts of paid orders per product and currency."""
  total = func.sum(LineItem.quantity * LineItem.price).label("total")
  stmt = (
      select(LineItem.sku, LineItem.path, total, Order.currency)
      .join(Order, Order.id == LineItem.order_id)
      .where(Order.payment_state == PaymentState.PAID.value)
      .group_by(LineItem.sku, LineItem.path, Order.currency)
      .order_by(total.desc())
  )
  stmt = _filter_created(stmt, start, end)
  result = await session.execute(stmt)
  return [
      {"sku": sku, "path": path, "total": amount or 0, "currency": currency}
      for sku, path, amount, currency in result.all()
  ]


def _filter_created(
    stmt: Any,
    start: Optional[datetime.datetime],
    end: Optional[datetime.datetime],
) -> Any:
  if start is not None:
    stmt = stmt.where(Order.created_at >= start)
  if end is not None:
    stmt = stmt.where(Order.created_at <= end)
  return stmt
