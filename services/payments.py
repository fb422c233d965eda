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

"""Payment provider abstraction.

A provider is selected once at startup and exposes three capabilities, each
built from the provider specific fields of a request body:

- `new_charger` returns `charge(amount, currency) -> processor_id`.
- `new_refunder` returns `refund(transaction_id, amount, currency) ->
  refund_id`.
- `new_preauthorizer` returns `preauthorize(amount, currency, description)
  -> PreauthorizationResult`, or raises `PreauthorizationUnsupportedError`.

Amounts are always in lowest currency units.
"""

import abc
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel

STRIPE_PROVIDER = "stripe"
PAYPAL_PROVIDER = "paypal"

RequestBody = Mapping[str, Any]


class PreauthorizationResult(BaseModel):
  id: str


Charger = Callable[[int, str], Awaitable[str]]
Refunder = Callable[[str, int, str], Awaitable[str]]
Preauthorizer = Callable[[int, str, str], Awaitable[PreauthorizationResult]]


def format_amount(amount: int) -> str:
  """Formats lowest currency units as a decimal string, e.g. 1050 -> 10.50."""
  return f"{amount // 100}.{amount % 100:02d}"


class PaymentProvider(abc.ABC):
  """Charges, refunds and preauthorizes payments with a gateway."""

  @property
  @abc.abstractmethod
  def name(self) -> str:
    """Identifier stored on orders paid through this provider."""

  @abc.abstractmethod
  def new_charger(self, body: RequestBody) -> Charger:
    """Builds a charger from the payment request body.

    Raises:
      InvalidRequestError: If the body lacks the provider's payment token.
    """

  @abc.abstractmethod
  def new_refunder(self, body: RequestBody) -> Refunder:
    """Builds a refunder from the refund request body."""

  @abc.abstractmethod
  def new_preauthorizer(
      self, body: RequestBody, site_url: str
  ) -> Preauthorizer:
    """Builds a preauthorizer.

    Raises:
      PreauthorizationUnsupportedError: If the provider cannot preauthorize.
    """
