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

"""Stripe payment provider."""

import asyncio
import logging

from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
from exceptions import PreauthorizationUnsupportedError
from services.payments import Charger
from services.payments import PaymentProvider
from services.payments import Preauthorizer
from services.payments import Refunder
from services.payments import RequestBody
from services.payments import STRIPE_PROVIDER
import stripe

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class StripePaymentProvider(PaymentProvider):
  """Charges card tokens created by Stripe.js or Checkout.

  Requests go through a dedicated `StripeClient` whose HTTP client is bound to
  `timeout` and which never retries, so a charge cannot hang a payment for
  longer than one gateway timeout.
  """

  def __init__(
      self, secret_key: str, timeout: float = DEFAULT_TIMEOUT_SECONDS
  ):
    if not secret_key:
      raise ValueError("Stripe configuration missing secret_key")
    self.timeout = timeout
    self._client = stripe.StripeClient(
        secret_key,
        http_client=stripe.RequestsClient(timeout=timeout),
        max_network_retries=0,
    )

  @property
  def name(self) -> str:
    return STRIPE_PROVIDER

  def new_charger(self, body: RequestBody) -> Charger:
    token = body.get("stripe_token")
    if not token or not isinstance(token, str):
      raise InvalidRequestError("Payments requires a stripe_token")

    async def charge(amount: int, currency: str) -> str:
      return await self._charge(token, amount, currency)

    return charge

  async def _charge(self, token: str, amount: int, currency: str) -> str:
    try:
      charge = await asyncio.to_thread(
          self._client.v1.charges.create,
          params={
              "source": token,
              "amount": amount,
              "currency": currency.lower(),
              "description": "Commerce order",
          },
      )
    except stripe.StripeError as e:
      logger.warning("Stripe charge failed: %s", e)
      raise PaymentProviderError(str(e)) from e
    return charge.id

  def new_refunder(self, body: RequestBody) -> Refunder:
    del body  # Unused.
    return self._refund

  async def _refund(
      self, transaction_id: str, amount: int, currency: str
  ) -> str:
    del currency  # Stripe refunds in the currency of the charge.
    try:
      refund = await asyncio.to_thread(
          self._client.v1.refunds.create,
          params={"charge": transaction_id, "amount": amount},
      )
    except stripe.StripeError as e:
      logger.warning("Stripe refund of %s failed: %s", transaction_id, e)
      raise PaymentProviderError(str(e)) from e
    return refund.id

  def new_preauthorizer(
      self, body: RequestBody, site_url: str
  ) -> Preauthorizer:
    raise PreauthorizationUnsupportedError(self.name)
