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

"""Tests for the Stripe and PayPal payment providers."""

import asyncio
import json
from unittest import mock

from absl.testing import absltest
from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
from exceptions import PreauthorizationUnsupportedError
import httpx
from services.payments import format_amount
from services.paypal_provider import API_BASE_SANDBOX
from services.paypal_provider import api_base_for_env
from services.paypal_provider import PayPalPaymentProvider
from services.stripe_provider import StripePaymentProvider
import stripe


class FormatAmountTest(absltest.TestCase):

  def test_format_amount(self):
    self.assertEqual(format_amount(1050), "10.50")
    self.assertEqual(format_amount(5), "0.05")
    self.assertEqual(format_amount(100000), "1000.00")


class StripePaymentProviderTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.provider = StripePaymentProvider("sk_test_123", timeout=12.0)
    self.stripe_v1 = self.provider._client.v1

  def test_requires_secret_key(self):
    with self.assertRaises(ValueError):
      StripePaymentProvider("")

  def test_client_is_bound_to_timeout(self):
    requestor = self.provider._client._requestor
    self.assertIsInstance(requestor._client, stripe.RequestsClient)
    self.assertEqual(requestor._client._timeout, 12.0)
    self.assertEqual(requestor._options.max_network_retries, 0)

  def test_charger_requires_token(self):
    with self.assertRaises(InvalidRequestError):
      self.provider.new_charger({})

  def test_charge(self):
    charger = self.provider.new_charger({"stripe_token": "tok_visa"})
    with mock.patch.object(
        self.stripe_v1.charges, "create", return_value=mock.Mock(id="ch_1")
    ) as create:
      charge_id = asyncio.run(charger(2400, "USD"))

    self.assertEqual(charge_id, "ch_1")
    create.assert_called_once_with(
        params={
            "source": "tok_visa",
            "amount": 2400,
            "currency": "usd",
            "description": "Commerce order",
        }
    )

  def test_declined_charge(self):
    charger = self.provider.new_charger({"stripe_token": "tok_declined"})
    with mock.patch.object(
        self.stripe_v1.charges,
        "create",
        side_effect=stripe.StripeError("Your card was declined."),
    ):
      with self.assertRaises(PaymentProviderError) as ctx:
        asyncio.run(charger(2400, "USD"))
    self.assertIn("declined", str(ctx.exception))

  def test_refund(self):
    refunder = self.provider.new_refunder({})
    with mock.patch.object(
        self.stripe_v1.refunds, "create", return_value=mock.Mock(id="re_1")
    ) as create:
      refund_id = asyncio.run(refunder("ch_1", 500, "USD"))

    self.assertEqual(refund_id, "re_1")
    create.assert_called_once_with(params={"charge": "ch_1", "amount": 500})

  def test_preauthorize_unsupported(self):
    with self.assertRaises(PreauthorizationUnsupportedError) as ctx:
      self.provider.new_preauthorizer({}, "https://shop.example.com")
    self.assertEqual(ctx.exception.status_code, 400)


class FakePayPal:
  """Minimal PayPal REST API."""

  def __init__(
      self,
      total="24.00",
      currency="USD",
      transactions=1,
      executed=None,
  ):
    self.total = total
    self.currency = currency
    self.transactions = transactions
    self.executed = executed or httpx.Response(
        200, json={"id": "PAY-1", "state": "approved"}
    )
    self.requests = []

  def paths(self):
    return [f"{r.method} {r.url.path}" for r in self.requests]

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    path = request.url.path
    if path == "/v1/oauth2/token":
      return httpx.Response(
          200, json={"access_token": "A21", "expires_in": 3600}
      )
    if request.headers.get("Authorization") != "Bearer A21":
      return httpx.Response(401)
    if request.method == "GET" and path == "/v1/payments/payment/PAY-1":
      return httpx.Response(
          200,
          json={
              "id": "PAY-1",
              "transactions": [
                  {"amount": {"total": self.total, "currency": self.currency}}
              ] * self.transactions,
          },
      )
    if path == "/v1/payments/payment/PAY-1/execute":
      return self.executed
    if path == "/v1/payments/sale/SALE-1/refund":
      return httpx.Response(200, json={"id": "REFUND-1"})
    if path == "/v1/payment-experience/web-profiles":
      return httpx.Response(201, json={"id": "XP-1"})
    if path == "/v1/payments/payment" and request.method == "POST":
      return httpx.Response(201, json={"id": "PAY-2"})
    return httpx.Response(404)


class PayPalPaymentProviderTest(absltest.TestCase):

  def _provider(self, paypal: FakePayPal) -> PayPalPaymentProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(paypal))
    return PayPalPaymentProvider("client", "secret", "sandbox", client)

  def test_api_base(self):
    self.assertEqual(api_base_for_env("sandbox"), API_BASE_SANDBOX)
    self.assertEqual(
        api_base_for_env("http://localhost:9000"), "http://localhost:9000"
    )
    with self.assertRaises(ValueError):
      api_base_for_env("")

  def test_charger_requires_payment_and_payer(self):
    provider = self._provider(FakePayPal())
    with self.assertRaises(InvalidRequestError):
      provider.new_charger({"paypal_payment_id": "PAY-1"})

  def test_charge_executes_matching_payment(self):
    paypal = FakePayPal()
    provider = self._provider(paypal)
    charger = provider.new_charger(
        {"paypal_payment_id": "PAY-1", "paypal_user_id": "PAYER-1"}
    )

    self.assertEqual(asyncio.run(charger(2400, "USD")), "PAY-1")
    self.assertEqual(
        paypal.paths(),
        [
            "POST /v1/oauth2/token",
            "GET /v1/payments/payment/PAY-1",
            "POST /v1/payments/payment/PAY-1/execute",
        ],
    )
    self.assertEqual(
        json.loads(paypal.requests[-1].content), {"payer_id": "PAYER-1"}
    )

  def test_charge_rejects_amount_mismatch(self):
    paypal = FakePayPal(total="20.00")
    charger = self._provider(paypal).new_charger(
        {"paypal_payment_id": "PAY-1", "paypal_user_id": "PAYER-1"}
    )
    with self.assertRaises(PaymentProviderError):
      asyncio.run(charger(2400, "USD"))
    self.assertNotIn(
        "POST /v1/payments/payment/PAY-1/execute", paypal.paths()
    )

  def test_charge_requires_single_transaction(self):
    charger = self._provider(FakePayPal(transactions=2)).new_charger(
        {"paypal_payment_id": "PAY-1", "paypal_user_id": "PAYER-1"}
    )
    with self.assertRaises(PaymentProviderError):
      asyncio.run(charger(2400, "USD"))

  def test_charge_with_unreadable_execute_response(self):
    for executed in (
        httpx.Response(200, text="<html>Service Unavailable</html>"),
        httpx.Response(200, json={"state": "approved"}),
        httpx.Response(200, json=["PAY-1"]),
    ):
      charger = self._provider(FakePayPal(executed=executed)).new_charger(
          {"paypal_payment_id": "PAY-1", "paypal_user_id": "PAYER-1"}
      )
      with self.assertRaises(PaymentProviderError):
        asyncio.run(charger(2400, "USD"))

  def test_refund(self):
    paypal = FakePayPal()
    refunder = self._provider(paypal).new_refunder({})
    self.assertEqual(asyncio.run(refunder("SALE-1", 500, "USD")), "REFUND-1")
    self.assertEqual(
        json.loads(paypal.requests[-1].content),
        {"amount": {"total": "5.00", "currency": "USD"}},
    )

  def test_preauthorize_reuses_experience_profile(self):
    paypal = FakePayPal()
    provider = self._provider(paypal)
    preauthorizer = provider.new_preauthorizer(
        {}, "https://shop.example.com/"
    )

    async def run():
      first = await preauthorizer(2400, "USD", "Order")
      second = await preauthorizer(1200, "USD", "Order")
      return first, second

    first, second = asyncio.run(run())
    self.assertEqual(first.id, "PAY-2")
    self.assertEqual(second.id, "PAY-2")
    self.assertEqual(
        paypal.paths().count("POST /v1/payment-experience/web-profiles"), 1
    )
    # The access token is cached across requests.
    self.assertEqual(paypal.paths().count("POST /v1/oauth2/token"), 1)

    payment = json.loads(paypal.requests[-1].content)
    self.assertEqual(payment["experience_profile_id"], "XP-1")
    self.assertEqual(
        payment["redirect_urls"]["return_url"],
        "https://shop.example.com/commerce/paypal",
    )
    self.assertEqual(
        payment["transactions"][0]["amount"],
        {"total": "12.00", "currency": "USD"},
    )


if __name__ == "__main__":
  absltest.main()
