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

"""PayPal payment provider built on the PayPal REST API.

Charges execute a payment the buyer approved in the browser. The payment is
created beforehand through `preauthorize`, which uses a web experience
profile created on first use and reused for the lifetime of the provider.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional
import uuid

from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
import httpx
from services.payments import Charger
from services.payments import format_amount
from services.payments import PAYPAL_PROVIDER
from services.payments import PaymentProvider
from services.payments import PreauthorizationResult
from services.payments import Preauthorizer
from services.payments import Refunder
from services.payments import RequestBody

logger = logging.getLogger(__name__)

API_BASE_LIVE = "https://api-m.paypal.com"
API_BASE_SANDBOX = "https://api-m.sandbox.paypal.com"

# Refresh access tokens slightly before PayPal expires them.
_TOKEN_EXPIRY_MARGIN_SECONDS = 60


def api_base_for_env(env: Optional[str]) -> str:
  if env == "production":
    return API_BASE_LIVE
  if env == "sandbox":
    return API_BASE_SANDBOX
  if not env:
    raise ValueError("PayPal configuration missing env")
  # Any other value is used as the API base, e.g. a local test server.
  return env


def _decode(response: httpx.Response, what: str) -> Dict[str, Any]:
  try:
    result = response.json()
  except ValueError as e:
    raise PaymentProviderError(f"Invalid PayPal {what} response: {e}") from e
  if not isinstance(result, dict):
    raise PaymentProviderError(f"Invalid PayPal {what} response: {result!r}")
  return result


def _require_id(result: Dict[str, Any], what: str) -> str:
  if not result.get("id"):
    raise PaymentProviderError(f"PayPal {what} response had no id")
  return result["id"]


class PayPalPaymentProvider(PaymentProvider):
  """Executes, refunds and creates PayPal payments."""

  def __init__(
      self,
      client_id: str,
      secret: str,
      env: str,
      http_client: httpx.AsyncClient,
  ):
    if not client_id or not secret:
      raise ValueError("missing PayPal client_id and/or secret")
    self._client_id = client_id
    self._secret = secret
    self._api_base = api_base_for_env(env).rstrip("/")
    self._http_client = http_client
    self._access_token: Optional[str] = None
    self._token_expires_at = 0.0
    self._profile_id: Optional[str] = None
    self._profile_lock = asyncio.Lock()

  @property
  def name(self) -> str:
    return PAYPAL_PROVIDER

  async def _get_access_token(self) -> str:
    if self._access_token and time.monotonic() < self._token_expires_at:
      return self._access_token

    try:
      response = await self._http_client.post(
          f"{self._api_base}/v1/oauth2/token",
          data={"grant_type": "client_credentials"},
          auth=(self._client_id, self._secret),
      )
    except httpx.HTTPError as e:
      raise PaymentProviderError(f"Error authorizing with paypal: {e}") from e
    if not response.is_success:
      raise PaymentProviderError(
          f"Error authorizing with paypal: status {response.status_code}"
      )

    token = _decode(response, "token")
    if not token.get("access_token"):
      raise PaymentProviderError("PayPal token response had no access_token")
    self._access_token = token["access_token"]
    self._token_expires_at = (
        time.monotonic()
        + float(token.get("expires_in", 0))
        - _TOKEN_EXPIRY_MARGIN_SECONDS
    )
    return self._access_token

  async def _request(
      self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
  ) -> Dict[str, Any]:
    """Sends an authenticated API request and returns the JSON response."""
    access_token = await self._get_access_token()
    try:
      response = await self._http_client.request(
          method,
          f"{self._api_base}{path}",
          json=payload,
          headers={"Authorization": f"Bearer {access_token}"},
      )
    except httpx.HTTPError as e:
      raise PaymentProviderError(f"PayPal request failed: {e}") from e

    if not response.is_success:
      raise PaymentProviderError(
          f"PayPal {method} {path} returned {response.status_code}:"
          f" {response.text}"
      )
    return _decode(response, f"{method} {path}")

  def new_charger(self, body: RequestBody) -> Charger:
    payment_id = body.get("paypal_payment_id")
    payer_id = body.get("paypal_user_id")
    if not payment_id or not payer_id:
      raise InvalidRequestError(
          "Payments requires a paypal_payment_id and paypal_user_id pair"
      )

    async def charge(amount: int, currency: str) -> str:
      return await self._charge(payment_id, payer_id, amount, currency)

    return charge

  async def _charge(
      self, payment_id: str, payer_id: str, amount: int, currency: str
  ) -> str:
    payment = await self._request("GET", f"/v1/payments/payment/{payment_id}")
    transactions = payment.get("transactions") or []
    if len(transactions) != 1:
      raise PaymentProviderError(
          "The paypal payment must have exactly 1 transaction, had"
          f" {len(transactions)}"
      )

    payment_amount = transactions[0].get("amount")
    if not payment_amount:
      raise PaymentProviderError("No amount in this transaction")

    if (
        payment_amount.get("total") != format_amount(amount)
        or payment_amount.get("currency") != currency
    ):
      raise PaymentProviderError(
          "The Amount in the transaction doesn't match the amount for the"
          f" order: {payment_amount}"
      )

    result = await self._request(
        "POST",
        f"/v1/payments/payment/{payment_id}/execute",
        {"payer_id": payer_id},
    )
    return _require_id(result, "executed payment")

  def new_refunder(self, body: RequestBody) -> Refunder:
    del body  # Unused.
    return self._refund

  async def _refund(self, transaction_id: str, amount: int, currency: str) -> str:
    result = await self._request(
        "POST",
        f"/v1/payments/sale/{transaction_id}/refund",
        {"amount": {"total": format_amount(amount), "currency": currency}},
    )
    return _require_id(result, "refund")

  def new_preauthorizer(
      self, body: RequestBody, site_url: str
  ) -> Preauthorizer:
    del body  # Unused.

    async def preauthorize(
        amount: int, currency: str, description: str
    ) -> PreauthorizationResult:
      return await self._preauthorize(site_url, amount, currency, description)

    return preauthorize

  async def _get_experience_profile(self) -> str:
    async with self._profile_lock:
      if self._profile_id is not None:
        return self._profile_id
      profile = await self._request(
          "POST",
          "/v1/payment-experience/web-profiles",
          {
              "name": f"commerce-{uuid.uuid4()}",
              "temporary": True,
              "input_fields": {"no_shipping": 1},
          },
      )
      self._profile_id = _require_id(profile, "web profile")
      logger.info("Created PayPal web profile %s", self._profile_id)
      return self._profile_id

  async def _preauthorize(
      self, site_url: str, amount: int, currency: str, description: str
  ) -> PreauthorizationResult:
    profile_id = await self._get_experience_profile()
    site_url = site_url.rstrip("/")
    payment = await self._request(
        "POST",
        "/v1/payments/payment",
        {
            "intent": "sale",
            "payer": {"payment_method": "paypal"},
            "experience_profile_id": profile_id,
            "transactions": [{
                "amount": {
                    "total": format_amount(amount),
                    "currency": currency,
                },
                "description": description,
            }],
            "redirect_urls": {
                "return_url": f"{site_url}/commerce/paypal",
                "cancel_url": f"{site_url}/commerce/paypal/cancel",
            },
        },
    )
    return PreauthorizationResult(id=_require_id(payment, "payment"))
