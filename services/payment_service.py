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

"""Payment service for charging orders and refunding transactions.

Charging an order checks the caller, recomputes the order total from the live
storefront settings and compares it with the amount the client declared. The
service then claims the order by moving it from `pending` to `processing` in
its own short transaction. Only one payment can win that claim. The payment
provider is called after the claim is committed, so the database is not
locked while the gateway works, and always with the server computed total.

Every charge attempt leaves a `Transaction` row. A failed charge commits its
failed transaction and returns the order to `pending`. A successful charge
moves the order to `paid`. Any failure before the claim rolls back
everything.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from config import CommerceServices
import db
from enums import HookType
from enums import PaymentState
from enums import TransactionStatus
from enums import TransactionType
from exceptions import InvalidRequestError
from exceptions import OrderAlreadyPaidError
from exceptions import PaymentFailedError
from exceptions import PaymentProviderError
from exceptions import ResourceNotFoundError
from exceptions import UnauthorizedError
from exceptions import VerificationError
from models import Pagination
from models import PaymentParams
from models import PreauthorizeParams
from models import RequestIdentity
from models import TransactionResponse
from services.hooks import new_hook
from services.order_service import calculate_order_price
from services.payments import PreauthorizationResult
from services.storefront import fetch_settings
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

FAILURE_CODE = "500"


class PaymentService:
  """Service for payments, refunds and transaction queries."""

  def __init__(self, session: AsyncSession, services: CommerceServices):
    self.session = session
    self.services = services
    self.config = services.config
    self.provider = services.payment_provider

  async def create_payment(
      self,
      order_id: str,
      params: PaymentParams,
      body: Mapping[str, Any],
      identity: RequestIdentity,
  ) -> db.Transaction:
    """Charges an order.

    Args:
      order_id: The order to pay.
      params: The amount and currency the client expects to be charged.
      body: The request body holding the provider's payment token.
      identity: The caller.

    Returns:
      The successful charge transaction.

    Raises:
      InvalidRequestError: On a missing payment token or currency mismatch.
      ResourceNotFoundError: If the order does not exist.
      OrderAlreadyPaidError: If the order is paid or another payment for it
        is in flight.
      UnauthorizedError: If the order belongs to another user.
      VerificationError: If the declared amount is not the order total.
      PaymentFailedError: If the charge did not go through.
    """
    charger = self.provider.new_charger(body)

    try:
      order = await db.get_order(self.session, order_id)
      if order is None:
        raise ResourceNotFoundError("No order with this ID found")
      if order.payment_state == PaymentState.PAID.value:
        raise OrderAlreadyPaidError()
      if order.payment_state == PaymentState.PROCESSING.value:
        raise OrderAlreadyPaidError(
            "A payment for this order is already in progress"
        )

      if order.user_id is not None and order.user_id != identity.user_id:
        raise UnauthorizedError("You must be logged in to pay for this order")
      payer_id = order.user_id or identity.user_id

      if order.currency != params.currency:
        raise InvalidRequestError(
            f"Currencies doesn't match - {order.currency} vs {params.currency}"
        )

      settings = await fetch_settings(
          self.services.http_client, self.config.settings_url
      )
      price = calculate_order_price(order, settings, identity.claims)
      if price.total != params.amount:
        raise VerificationError(
            "Amount calculated for order didn't match amount to charge."
            f" {price.total} vs {params.amount}"
        )

      if not await db.claim_order_for_payment(self.session, order.id):
        raise OrderAlreadyPaidError()
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e

    transaction = db.Transaction(
        id=db.new_id(),
        order_id=order.id,
        user_id=payer_id,
        amount=price.total,
        amount_reversed=0,
        currency=order.currency,
        type=TransactionType.CHARGE.value,
    )
    try:
      processor_id = await charger(price.total, order.currency)
    except PaymentProviderError as e:
      logger.warning("Charging order %s failed: %s", order.id, e)
      await self._record_failed_charge(transaction, str(e))
      raise PaymentFailedError(
          f"There was an error charging your card: {e}"
      ) from e
    except Exception as e:
      logger.exception("Unexpected error charging order %s", order.id)
      await self._record_failed_charge(transaction, repr(e))
      raise PaymentFailedError(
          "There was an error charging your card"
      ) from e

    try:
      if order.user_id is None and identity.authenticated:
        order.user_id = identity.user_id
      transaction.processor_id = processor_id
      transaction.status = TransactionStatus.PAID.value
      self.session.add(transaction)
      order.payment_state = PaymentState.PAID.value
      order.payment_processor = self.provider.name
      await self.session.flush()

      if self.config.payment_webhook_url:
        self.session.add(
            new_hook(
                HookType.PAYMENT,
                self.config.site_url,
                self.config.payment_webhook_url,
                order.user_id,
                self.config.webhook_secret,
                TransactionResponse.model_validate(transaction),
            )
        )
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      # The order stays in processing so it cannot be charged twice.
      logger.error(
          "Order %s was charged as %s but could not be saved",
          order.id,
          processor_id,
      )
      raise e

    logger.info("Order %s paid with %s", order.id, processor_id)
    return transaction

  async def _record_failed_charge(
      self, transaction: db.Transaction, description: str
  ) -> None:
    """Stores a failed charge and hands the order back to new payments."""
    transaction.failure_code = FAILURE_CODE
    transaction.failure_description = description
    transaction.status = TransactionStatus.FAILED.value
    try:
      self.session.add(transaction)
      await db.release_payment_claim(self.session, transaction.order_id)
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e

  async def list_for_order(
      self,
      order_id: str,
      identity: RequestIdentity,
      pagination: Optional[Pagination] = None,
  ) -> db.Page:
    """Lists the transactions of an order for its owner or an admin."""
    if not identity.authenticated:
      raise UnauthorizedError("Listing payments requires authentication")
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    if not identity.is_admin and (
        order.user_id is None or order.user_id != identity.user_id
    ):
      raise UnauthorizedError("You don't have access to this order")
    pagination = pagination or Pagination()
    return await db.list_transactions(
        self.session,
        order_id=order_id,
        page=pagination.page,
        per_page=pagination.per_page,
    )

  async def list_for_user(
      self,
      user_id: str,
      identity: RequestIdentity,
      pagination: Optional[Pagination] = None,
  ) -> db.Page:
    if not identity.authenticated:
      raise UnauthorizedError("Listing payments requires authentication")
    if not identity.is_admin and user_id != identity.user_id:
      raise UnauthorizedError("You can only list your own payments")
    pagination = pagination or Pagination()
    return await db.list_transactions(
        self.session,
        user_id=user_id,
        page=pagination.page,
        per_page=pagination.per_page,
    )

  async def list_all(
      self,
      identity: RequestIdentity,
      pagination: Optional[Pagination] = None,
  ) -> db.Page:
    identity.require_admin()
    pagination = pagination or Pagination()
    return await db.list_transactions(
        self.session, page=pagination.page, per_page=pagination.per_page
    )

  async def get_transaction(
      self, transaction_id: str, identity: RequestIdentity
  ) -> db.Transaction:
    identity.require_admin()
    transaction = await db.get_transaction(self.session, transaction_id)
    if transaction is None:
      raise ResourceNotFoundError("Transaction not found")
    return transaction

  async def refund(
      self,
      transaction_id: str,
      params: PaymentParams,
      body: Mapping[str, Any],
      identity: RequestIdentity,
  ) -> db.Transaction:
    """Refunds part or all of a successful charge.

    A refund transaction is recorded whether or not the provider accepts the
    refund. A failed refund is reported through the returned transaction.
    """
    charge = await self.get_transaction(transaction_id, identity)

    if charge.currency != params.currency:
      raise InvalidRequestError(
          f"Currencies do not match - {charge.currency} vs {params.currency}"
      )
    refundable = charge.amount - (charge.amount_reversed or 0)
    if params.amount <= 0 or params.amount > refundable:
      raise InvalidRequestError(
          "The balance of the refund must be between 0 and the total amount"
      )
    if charge.failure_code:
      raise InvalidRequestError("Can't refund a failed transaction")
    if (
        charge.type != TransactionType.CHARGE.value
        or charge.status != TransactionStatus.PAID.value
    ):
      raise InvalidRequestError(
          "Can't refund a transaction that hasn't been paid"
      )

    order = await db.get_order(self.session, charge.order_id)
    if order is None:
      raise ResourceNotFoundError("Order not found")
    if order.payment_processor != self.provider.name:
      raise InvalidRequestError(
          "Order does not match configured payment provider"
      )
    refunder = self.provider.new_refunder(body)

    refund = db.Transaction(
        id=db.new_id(),
        order_id=charge.order_id,
        user_id=charge.user_id,
        amount=params.amount,
        amount_reversed=0,
        currency=params.currency,
        type=TransactionType.REFUND.value,
        status=TransactionStatus.PENDING.value,
    )
    try:
      logger.info("Refunding %d of %s", params.amount, charge.id)
      try:
        refund.processor_id = await refunder(
            charge.processor_id, params.amount, params.currency
        )
      except PaymentProviderError as e:
        logger.warning("Refund of %s failed: %s", charge.id, e)
        refund.failure_code = FAILURE_CODE
        refund.failure_description = str(e)
        refund.status = TransactionStatus.FAILED.value
      except Exception as e:
        logger.exception("Unexpected error refunding %s", charge.id)
        refund.failure_code = FAILURE_CODE
        refund.failure_description = repr(e)
        refund.status = TransactionStatus.FAILED.value
      else:
        refund.status = TransactionStatus.PAID.value
        charge.amount_reversed = (charge.amount_reversed or 0) + params.amount

      self.session.add(refund)
      await self.session.flush()
      if self.config.refund_webhook_url:
        self.session.add(
            new_hook(
                HookType.REFUND,
                self.config.site_url,
                self.config.refund_webhook_url,
                refund.user_id,
                self.config.webhook_secret,
                TransactionResponse.model_validate(refund),
            )
        )
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e
    return refund

  async def preauthorize(
      self, params: PreauthorizeParams, body: Dict[str, Any]
  ) -> PreauthorizationResult:
    preauthorizer = self.provider.new_preauthorizer(body, self.config.site_url)
    try:
      return await preauthorizer(
          params.amount, params.currency, params.description
      )
    except PaymentProviderError as e:
      raise PaymentFailedError(
          f"Error preauthorizing payment: {e}"
      ) from e
