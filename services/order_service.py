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

"""Order service for creating and viewing orders.

This module provides the `OrderService` class, which encapsulates the business
logic for creating orders and reading them back. Creating an order:
- Binds the order to the authenticated user, creating the user on first sight.
- Resolves or stores the shipping and billing addresses.
- Looks up and validates the coupon.
- Verifies every line item price against the storefront.
- Copies the downloads the product pages list into the order.
- Prices the order with the storefront's live settings.

All of it happens in one transaction that is rolled back on any failure.

Admins can later update an order while it is pending. Payment details are
locked once a payment has started and the shipping address once the order has
shipped.
"""

import logging
from typing import Any, List, Mapping, Optional

from config import CommerceServices
import db
from enums import FulfillmentState
from enums import HookType
from enums import OrderState
from enums import PaymentState
from exceptions import InvalidRequestError
from exceptions import ResourceNotFoundError
from exceptions import UnauthorizedError
from models import AddressParams
from models import OrderParams
from models import OrderResponse
from models import OrderUpdateParams
from models import Pagination
from models import RequestIdentity
from services.calculator import calculate_price
from services.calculator import Price
from services.calculator import Settings
from services.coupons import Coupon
from services.hooks import new_hook
from services.storefront import fetch_settings
from services.verifier import verify_line_items
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def order_coupon(order: db.Order) -> Optional[Coupon]:
  """Returns the coupon snapshot stored with the order."""
  if not order.coupon:
    return None
  return Coupon.model_validate(order.coupon)


def apply_price(
    order: db.Order,
    settings: Optional[Settings],
    claims: Optional[Mapping[str, Any]],
) -> Price:
  """Prices an order and stores the totals and per item breakdown on it."""
  price = calculate_order_price(order, settings, claims)
  for item, item_price in zip(order.line_items, price.items):
    item.calculation = item_price.model_dump(mode="json")
  order.subtotal = price.subtotal
  order.discount = price.discount
  order.taxes = price.taxes
  order.total = price.total
  return price


def calculate_order_price(
    order: db.Order,
    settings: Optional[Settings],
    claims: Optional[Mapping[str, Any]],
) -> Price:
  country = ""
  if order.shipping_address is not None:
    country = order.shipping_address.country or ""
  return calculate_price(
      settings,
      claims,
      country,
      order.currency,
      order_coupon(order),
      order.line_items,
  )


def can_view_order(order: db.Order, identity: RequestIdentity) -> bool:
  if identity.is_admin or order.user_id is None:
    return True
  return order.user_id == identity.user_id


class OrderService:
  """Service for creating and reading orders."""

  def __init__(self, session: AsyncSession, services: CommerceServices):
    self.session = session
    self.services = services
    self.config = services.config

  async def create_order(
      self, params: OrderParams, identity: RequestIdentity
  ) -> db.Order:
    """Creates a pending order with server computed totals."""
    logger.info("Creating order with %d line items", len(params.line_items))
    try:
      order = db.Order(
          id=db.new_id(),
          session_id=params.session_id,
          email=params.email,
          currency=params.currency,
          payment_state=PaymentState.PENDING.value,
          fulfillment_state=FulfillmentState.PENDING.value,
          state=OrderState.PENDING.value,
          vat_number=params.vat_number,
          meta=params.meta,
          line_items=self._build_line_items(params),
          notes=[],
          downloads=[],
      )

      if identity.authenticated:
        user = await db.get_or_create_user(
            self.session, identity.user_id, identity.email or params.email
        )
        order.user_id = user.id
        if not order.email:
          order.email = user.email
      if not order.email:
        raise InvalidRequestError("Orders require an email address")

      shipping = await self._resolve_address(
          params.shipping_address, params.shipping_address_id, identity
      )
      if shipping is None:
        raise InvalidRequestError("Shipping address is required")
      billing = await self._resolve_address(
          params.billing_address, params.billing_address_id, identity
      )
      order.shipping_address = shipping
      order.billing_address = billing or shipping

      if params.coupon:
        coupon = await self._lookup_coupon(params.coupon, identity)
        order.coupon_code = coupon.code
        order.coupon = coupon.model_dump(mode="json")

      products = await verify_line_items(
          order.line_items,
          self.config.site_url,
          self.services.http_client,
      )
      for item, product in zip(order.line_items, products):
        for download in product.downloads:
          order.downloads.append(
              db.Download(
                  id=db.new_id(),
                  line_item=item,
                  title=download.title,
                  format=download.format,
                  url=download.url,
              )
          )

      settings = await self._fetch_settings()
      apply_price(order, settings, identity.claims)

      self.session.add(order)
      await self.session.flush()

      if self.config.order_webhook_url:
        self.session.add(
            new_hook(
                HookType.ORDER,
                self.config.site_url,
                self.config.order_webhook_url,
                order.user_id,
                self.config.webhook_secret,
                OrderResponse.model_validate(order),
            )
        )

      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e

    logger.info("Created order %s with total %d", order.id, order.total)
    return order

  def _build_line_items(self, params: OrderParams) -> List[db.LineItem]:
    line_items = []
    for position, item in enumerate(params.line_items):
      if item.taxable_items:
        taxable_total = sum(sub.price for sub in item.taxable_items)
        if taxable_total != item.price:
          raise InvalidRequestError(
              f"Taxable items of {item.title} must add up to its price"
          )
      line_items.append(
          db.LineItem(
              position=position,
              title=item.title,
              sku=item.sku,
              type=item.type,
              description=item.description,
              path=item.path,
              price=item.price,
              vat=item.vat,
              quantity=item.quantity,
              taxable_items_data=[
                  sub.model_dump() for sub in item.taxable_items
              ],
          )
      )
    return line_items

  async def _resolve_address(
      self,
      address: Optional[AddressParams],
      address_id: Optional[str],
      identity: RequestIdentity,
  ) -> Optional[db.Address]:
    """Loads a stored address by id or creates one from the parameters."""
    if address_id:
      stored = await db.get_address(self.session, address_id)
      if stored is None or (
          stored.user_id is not None and stored.user_id != identity.user_id
      ):
        raise InvalidRequestError(f"Unknown address {address_id}")
      return stored
    if address is None:
      return None
    return db.Address(
        id=db.new_id(), user_id=identity.user_id, **address.model_dump()
    )

  async def _lookup_coupon(
      self, code: str, identity: RequestIdentity
  ) -> Coupon:
    cache = self.services.coupon_cache
    if cache is None:
      raise InvalidRequestError("Coupons are not enabled for this store")
    coupon = await cache.lookup(code)
    if not coupon.valid():
      raise InvalidRequestError(f"Coupon {code} is not valid at this time")
    if not coupon.valid_for_claims(identity.claims):
      raise InvalidRequestError(f"Coupon {code} is not valid for this user")
    return coupon

  async def _fetch_settings(self) -> Optional[Settings]:
    return await fetch_settings(
        self.services.http_client, self.config.settings_url
    )

  async def get_order(
      self, order_id: str, identity: RequestIdentity
  ) -> db.Order:
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    if not can_view_order(order, identity):
      raise UnauthorizedError("You don't have access to this order")
    return order

  async def list_orders(
      self,
      identity: RequestIdentity,
      user_id: Optional[str] = None,
      pagination: Optional[Pagination] = None,
  ) -> db.Page:
    """Lists the caller's orders, or any user's orders for admins."""
    if not identity.authenticated:
      raise UnauthorizedError("Listing orders requires authentication")
    if not identity.is_admin:
      if user_id is not None and user_id != identity.user_id:
        raise UnauthorizedError("You can only list your own orders")
      user_id = identity.user_id
    pagination = pagination or Pagination()
    return await db.list_orders(
        self.session, user_id, pagination.page, pagination.per_page
    )

  async def update_order(
      self,
      order_id: str,
      params: OrderUpdateParams,
      identity: RequestIdentity,
  ) -> db.Order:
    """Applies an admin's changes to a pending order.

    Totals are not recomputed. A payment prices the order again from the
    live settings before charging.

    Args:
      order_id: The order to update.
      params: The fields to change.
      identity: The caller, who must be an admin.

    Returns:
      The updated order.

    Raises:
      UnauthorizedError: If the caller is not an admin.
      ResourceNotFoundError: If the order does not exist.
      InvalidRequestError: If the order is no longer pending or a field is
        locked by the order's payment or fulfillment state.
    """
    identity.require_admin()
    try:
      order = await db.get_order(self.session, order_id)
      if order is None:
        raise ResourceNotFoundError(
            f"Failed to find order with id '{order_id}'"
        )
      if order.state != OrderState.PENDING.value:
        raise InvalidRequestError(
            "Order is no longer pending - can't update details"
        )
      payment_started = order.payment_state != PaymentState.PENDING.value
      shipped = order.fulfillment_state == FulfillmentState.SHIPPED.value
      owner = RequestIdentity(user_id=order.user_id)

      if params.email:
        order.email = params.email
      if params.currency:
        if payment_started:
          raise InvalidRequestError(
              "Can't update the currency after payment has been processed"
          )
        order.currency = params.currency
      if params.vat_number:
        if payment_started:
          raise InvalidRequestError(
              "Can't update the VAT number after payment has been processed"
          )
        order.vat_number = params.vat_number

      if params.billing_address or params.billing_address_id:
        if payment_started:
          raise InvalidRequestError(
              "Can't update the billing address of an order that has"
              " already been paid"
          )
        order.billing_address = await self._resolve_address(
            params.billing_address, params.billing_address_id, owner
        )
      if params.shipping_address or params.shipping_address_id:
        if shipped:
          raise InvalidRequestError(
              "Can't update the shipping address of an order that has been"
              " shipped"
          )
        order.shipping_address = await self._resolve_address(
            params.shipping_address, params.shipping_address_id, owner
        )

      if params.meta is not None:
        order.meta = {**(order.meta or {}), **params.meta}
      if params.fulfillment_state is not None:
        order.fulfillment_state = params.fulfillment_state.value
      if params.state is not None:
        order.state = params.state.value

      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e

    logger.info("Order %s updated by %s", order.id, identity.user_id)
    return order
