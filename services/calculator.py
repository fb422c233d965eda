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

"""Price calculation for orders.

This module computes the authoritative price of a set of line items from the
storefront settings, the buyer's claims, an optional coupon and the buyer's
country. All amounts are integers in the lowest currency unit (e.g. cents).

The calculation per item is:
- Taxes from a fixed VAT percentage, per taxable sub-item, or from the first
  matching tax rule.
- When prices include taxes, the net price is rounded and the tax is the rest
  of the gross price, so subtotal and taxes add up to the price.
- Coupon and member discounts, each kept between 0 and the discountable
  amount and then summed.

Order level sums are per item values multiplied by quantity. The order total
is recomputed from the aggregated sums.
"""

import decimal
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from enums import DiscountType
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from services.claims import has_claims

logger = logging.getLogger(__name__)


def rint(value: float) -> int:
  """Rounds to the nearest integer, ties to even."""
  return int(round(value))


def to_lowest_unit(amount: str) -> int:
  """Converts a decimal amount string such as "10.00" to minor units."""
  try:
    cents = decimal.Decimal(amount) * 100
  except decimal.InvalidOperation:
    logger.warning("Ignoring malformed amount %r", amount)
    return 0
  return int(cents.to_integral_value(rounding=decimal.ROUND_HALF_EVEN))


class Item(Protocol):
  """A priced item as seen by the calculator."""

  quantity: int

  def product_sku(self) -> str:
    ...

  def price_in_lowest_unit(self) -> int:
    ...

  def product_type(self) -> str:
    ...

  def fixed_vat(self) -> int:
    ...

  def taxable_items(self) -> Sequence["Item"]:
    ...


class Coupon(Protocol):
  """Discount source applied to every eligible item."""

  def valid_for_type(self, product_type: str) -> bool:
    ...

  def valid_for_product(self, product_sku: str) -> bool:
    ...

  def percentage_discount(self) -> int:
    ...

  def fixed_discount(self, currency: str) -> int:
    ...


class Tax(BaseModel):
  """A flat tax rate scoped to product types and countries."""

  model_config = ConfigDict(extra="ignore")

  percentage: int = 0
  product_types: List[str] = Field(default_factory=list)
  countries: List[str] = Field(default_factory=list)

  def applies_to(self, country: str, product_type: str) -> bool:
    if self.product_types and product_type not in self.product_types:
      return False
    if self.countries and country not in self.countries:
      return False
    return True


class FixedAmount(BaseModel):
  amount: str
  currency: str


class MemberDiscount(BaseModel):
  """A discount granted to buyers whose claims match."""

  model_config = ConfigDict(extra="ignore")

  claims: Dict[str, str] = Field(default_factory=dict)
  percentage: int = 0
  fixed: List[FixedAmount] = Field(default_factory=list)
  product_types: List[str] = Field(default_factory=list)
  products: List[str] = Field(default_factory=list)

  def valid_for_claims(self, claims: Optional[Mapping[str, Any]]) -> bool:
    # A discount without claims would apply to everyone.
    if not self.claims:
      return False
    return has_claims(claims, self.claims)

  def valid_for_type(self, product_type: str) -> bool:
    return not self.product_types or product_type in self.product_types

  def valid_for_product(self, product_sku: str) -> bool:
    return not self.products or product_sku in self.products

  def fixed_discount(self, currency: str) -> int:
    for fixed in self.fixed:
      if fixed.currency == currency:
        return to_lowest_unit(fixed.amount)
    return 0


class Settings(BaseModel):
  """Pricing settings published by the storefront."""

  model_config = ConfigDict(extra="ignore")

  prices_include_taxes: bool = False
  taxes: List[Tax] = Field(default_factory=list)
  member_discounts: List[MemberDiscount] = Field(default_factory=list)

  def tax_percentage(self, country: str, product_type: str) -> int:
    for tax in self.taxes:
      if tax.applies_to(country, product_type):
        return tax.percentage
    return 0


class DiscountItem(BaseModel):
  type: DiscountType
  percentage: int = 0
  fixed: int = 0


class ItemPrice(BaseModel):
  """Price of a single unit of an item."""

  quantity: int = 1
  subtotal: int = 0
  discount: int = 0
  taxes: int = 0
  total: int = 0
  discount_items: List[DiscountItem] = Field(default_factory=list)


class Price(BaseModel):
  items: List[ItemPrice] = Field(default_factory=list)
  subtotal: int = 0
  discount: int = 0
  taxes: int = 0
  total: int = 0


def calculate_discount(
    amount_to_discount: int, percentage: int, fixed: int
) -> int:
  """Returns the percentage plus fixed discount, between 0 and the amount."""
  discount = 0
  if percentage > 0:
    discount = rint(amount_to_discount * percentage / 100)
  discount += fixed
  return max(0, min(discount, amount_to_discount))


def _tax_amounts(
    settings: Settings, country: str, item: Item
) -> List[Tuple[int, int]]:
  """Returns (price, percentage) pairs that make up the item's taxes."""
  vat = item.fixed_vat()
  if vat:
    return [(item.price_in_lowest_unit(), vat)]

  sub_items = item.taxable_items()
  if sub_items:
    return [
        (
            sub.price_in_lowest_unit(),
            settings.tax_percentage(country, sub.product_type()),
        )
        for sub in sub_items
    ]

  percentage = settings.tax_percentage(country, item.product_type())
  if percentage:
    return [(item.price_in_lowest_unit(), percentage)]
  return []


def _quantity(item: Item) -> int:
  if item.quantity and item.quantity > 0:
    return item.quantity
  return 1


def calculate_item_price(
    settings: Settings,
    claims: Optional[Mapping[str, Any]],
    country: str,
    currency: str,
    coupon: Optional[Coupon],
    item: Item,
) -> ItemPrice:
  """Calculates the price of one unit of an item."""
  include_taxes = settings.prices_include_taxes
  item_price = ItemPrice(
      quantity=_quantity(item), subtotal=item.price_in_lowest_unit()
  )

  amounts = _tax_amounts(settings, country, item)
  if amounts:
    if include_taxes:
      item_price.subtotal = 0
    for price, percentage in amounts:
      if include_taxes:
        net = rint(price / (100 + percentage) * 100)
        item_price.subtotal += net
        item_price.taxes += price - net
      else:
        item_price.taxes += rint(price * percentage / 100)

  amount_to_discount = item_price.subtotal
  if include_taxes:
    amount_to_discount += item_price.taxes

  sku = item.product_sku()
  product_type = item.product_type()
  if (
      coupon is not None
      and coupon.valid_for_type(product_type)
      and coupon.valid_for_product(sku)
  ):
    percentage = coupon.percentage_discount()
    fixed = coupon.fixed_discount(currency)
    item_price.discount += calculate_discount(
        amount_to_discount, percentage, fixed
    )
    item_price.discount_items.append(
        DiscountItem(type=DiscountType.COUPON, percentage=percentage, fixed=fixed)
    )

  for member_discount in settings.member_discounts:
    if (
        member_discount.valid_for_claims(claims)
        and member_discount.valid_for_type(product_type)
        and member_discount.valid_for_product(sku)
    ):
      fixed = member_discount.fixed_discount(currency)
      item_price.discount += calculate_discount(
          amount_to_discount, member_discount.percentage, fixed
      )
      item_price.discount_items.append(
          DiscountItem(
              type=DiscountType.MEMBER,
              percentage=member_discount.percentage,
              fixed=fixed,
          )
      )

  item_price.total = max(
      item_price.subtotal - item_price.discount + item_price.taxes, 0
  )
  return item_price


def calculate_price(
    settings: Optional[Settings],
    claims: Optional[Mapping[str, Any]],
    country: str,
    currency: str,
    coupon: Optional[Coupon],
    items: Sequence[Item],
) -> Price:
  """Calculates the authoritative price for a list of items.

  Args:
    settings: Storefront settings, or None when the storefront has none.
    claims: The buyer's JWT claims used for member discounts.
    country: Country used to select tax rules.
    currency: Currency used for fixed discounts.
    coupon: Optional coupon applied to eligible items.
    items: The line items to price.

  Returns:
    The itemized price. Totals are never negative.
  """
  settings = settings or Settings()
  price = Price()
  for item in items:
    item_price = calculate_item_price(
        settings, claims, country, currency, coupon, item
    )
    price.items.append(item_price)

    quantity = item_price.quantity
    price.subtotal += item_price.subtotal * quantity
    price.discount += item_price.discount * quantity
    price.taxes += item_price.taxes * quantity

  price.total = max(price.subtotal - price.discount + price.taxes, 0)
  return price
