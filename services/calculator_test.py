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

"""Tests for the price calculator."""

from typing import List, Optional, Sequence

from absl.testing import absltest
from enums import DiscountType
from services.calculator import calculate_discount
from services.calculator import calculate_price
from services.calculator import FixedAmount
from services.calculator import MemberDiscount
from services.calculator import Settings
from services.calculator import Tax
from services.calculator import to_lowest_unit
from services.coupons import Coupon

MEMBER_CLAIMS = {"app_metadata": {"subscription": {"plan": "member"}}}


class FakeItem:
  """Minimal line item for pricing."""

  def __init__(
      self,
      price: int,
      product_type: str = "book",
      sku: str = "sku-1",
      quantity: int = 1,
      vat: int = 0,
      sub_items: Optional[List["FakeItem"]] = None,
  ):
    self.price = price
    self.type = product_type
    self.sku = sku
    self.quantity = quantity
    self.vat = vat
    self.sub_items = sub_items or []

  def product_sku(self) -> str:
    return self.sku

  def price_in_lowest_unit(self) -> int:
    return self.price

  def product_type(self) -> str:
    return self.type

  def fixed_vat(self) -> int:
    return self.vat

  def taxable_items(self) -> Sequence["FakeItem"]:
    return self.sub_items


def book_settings(**kwargs) -> Settings:
  return Settings(
      prices_include_taxes=True,
      taxes=[
          Tax(percentage=7, product_types=["book"]),
          Tax(percentage=19, product_types=["ebook"]),
      ],
      **kwargs,
  )


class CalculatorTest(absltest.TestCase):

  def test_no_settings_charges_list_price(self):
    price = calculate_price(
        None, None, "USA", "USD", None, [FakeItem(1200, quantity=2)]
    )
    self.assertEqual(price.subtotal, 2400)
    self.assertEqual(price.taxes, 0)
    self.assertEqual(price.discount, 0)
    self.assertEqual(price.total, 2400)

  def test_fixed_vat_with_prices_including_taxes(self):
    settings = Settings(prices_include_taxes=True)
    price = calculate_price(
        settings, None, "USA", "USD", None, [FakeItem(100, vat=9)]
    )
    self.assertEqual(price.subtotal, 92)
    self.assertEqual(price.taxes, 8)
    self.assertEqual(price.total, 100)

  def test_coupon_on_prices_including_taxes(self):
    settings = Settings(prices_include_taxes=True)
    coupon = Coupon(code="TEN", percentage=10)
    price = calculate_price(
        settings, None, "USA", "USD", coupon, [FakeItem(100, vat=9)]
    )
    self.assertEqual(price.subtotal, 92)
    self.assertEqual(price.taxes, 8)
    self.assertEqual(price.discount, 10)
    self.assertEqual(price.total, 90)
    self.assertLen(price.items[0].discount_items, 1)
    self.assertEqual(
        price.items[0].discount_items[0].type, DiscountType.COUPON
    )

  def test_taxes_included_in_price_add_up_to_price(self):
    settings = Settings(prices_include_taxes=True)
    price = calculate_price(
        settings, None, "USA", "USD", None, [FakeItem(69, vat=7)]
    )
    self.assertEqual(price.subtotal, 64)
    self.assertEqual(price.taxes, 5)
    self.assertEqual(price.total, 69)

  def test_taxes_included_in_price_on_a_rounding_tie(self):
    # 1005 at 20% has a net price of exactly 837.5, which rounds to even.
    settings = Settings(
        prices_include_taxes=True, taxes=[Tax(percentage=20)]
    )
    price = calculate_price(
        settings, None, "USA", "EUR", None, [FakeItem(1005)]
    )
    self.assertEqual(price.subtotal, 838)
    self.assertEqual(price.taxes, 167)
    self.assertEqual(price.subtotal + price.taxes, 1005)
    self.assertEqual(price.total, 1005)

  def test_sums_multiply_by_quantity(self):
    settings = Settings(prices_include_taxes=True)
    coupon = Coupon(code="TEN", percentage=10)
    price = calculate_price(
        settings,
        None,
        "USA",
        "USD",
        coupon,
        [FakeItem(100, vat=9, quantity=2)],
    )
    self.assertEqual(price.subtotal, 184)
    self.assertEqual(price.taxes, 16)
    self.assertEqual(price.discount, 20)
    self.assertEqual(price.total, 180)
    self.assertEqual(price.items[0].quantity, 2)
    self.assertEqual(price.items[0].total, 90)

  def test_coupon_on_prices_excluding_taxes(self):
    coupon = Coupon(code="TEN", percentage=10)
    price = calculate_price(
        Settings(), None, "USA", "USD", coupon, [FakeItem(100, vat=10)]
    )
    self.assertEqual(price.subtotal, 100)
    self.assertEqual(price.taxes, 10)
    self.assertEqual(price.discount, 10)
    self.assertEqual(price.total, 100)

  def test_taxable_sub_items_use_tax_rules(self):
    items = [
        FakeItem(
            2900,
            product_type="bundle",
            sub_items=[
                FakeItem(1900, product_type="book"),
                FakeItem(1000, product_type="ebook"),
            ],
        ),
        FakeItem(
            3490,
            product_type="bundle",
            sub_items=[
                FakeItem(2300, product_type="book"),
                FakeItem(1190, product_type="ebook"),
            ],
        ),
    ]
    price = calculate_price(book_settings(), None, "USA", "USD", None, items)

    self.assertEqual(price.items[0].subtotal, 2616)
    self.assertEqual(price.items[0].taxes, 284)
    self.assertEqual(price.items[1].subtotal, 3150)
    # Each tax is what the rounded net price leaves of the gross price.
    self.assertEqual(price.items[1].taxes, 340)
    self.assertEqual(price.subtotal, 5766)
    self.assertEqual(price.taxes, 624)
    self.assertEqual(price.total, 6390)

  def test_tax_rules_filter_by_country(self):
    settings = Settings(
        taxes=[Tax(percentage=20, countries=["Germany"])],
    )
    item = FakeItem(1000)
    in_germany = calculate_price(
        settings, None, "Germany", "EUR", None, [item]
    )
    elsewhere = calculate_price(settings, None, "USA", "EUR", None, [item])
    self.assertEqual(in_germany.taxes, 200)
    self.assertEqual(in_germany.total, 1200)
    self.assertEqual(elsewhere.taxes, 0)
    self.assertEqual(elsewhere.total, 1000)

  def test_fixed_member_discount(self):
    settings = book_settings(
        member_discounts=[
            MemberDiscount(
                claims={"app_metadata.subscription.plan": "member"},
                fixed=[FixedAmount(amount="10.00", currency="EUR")],
                product_types=["book"],
            )
        ]
    )
    item = FakeItem(
        3900,
        product_type="book",
        sub_items=[
            FakeItem(2900, product_type="book"),
            FakeItem(1000, product_type="ebook"),
        ],
    )
    price = calculate_price(
        settings, MEMBER_CLAIMS, "Germany", "EUR", None, [item]
    )
    self.assertEqual(price.subtotal, 3550)
    self.assertEqual(price.taxes, 350)
    self.assertEqual(price.discount, 1000)
    self.assertEqual(price.total, 2900)
    self.assertEqual(
        price.items[0].discount_items[0].type, DiscountType.MEMBER
    )

  def test_member_discount_requires_matching_claims(self):
    settings = Settings(
        member_discounts=[
            MemberDiscount(
                claims={"app_metadata.subscription.plan": "member"},
                percentage=50,
            )
        ]
    )
    price = calculate_price(
        settings,
        {"app_metadata": {"subscription": {"plan": "free"}}},
        "USA",
        "USD",
        None,
        [FakeItem(1000)],
    )
    self.assertEqual(price.discount, 0)
    anonymous = calculate_price(
        settings, None, "USA", "USD", None, [FakeItem(1000)]
    )
    self.assertEqual(anonymous.discount, 0)

  def test_member_discount_without_claims_never_applies(self):
    settings = Settings(member_discounts=[MemberDiscount(percentage=50)])
    price = calculate_price(
        settings, MEMBER_CLAIMS, "USA", "USD", None, [FakeItem(1000)]
    )
    self.assertEqual(price.discount, 0)
    self.assertEqual(price.total, 1000)

  def test_coupon_restricted_to_product_types(self):
    coupon = Coupon(code="BOOKS", percentage=50, product_types=["book"])
    price = calculate_price(
        Settings(),
        None,
        "USA",
        "USD",
        coupon,
        [
            FakeItem(1000, product_type="book", sku="a"),
            FakeItem(1000, product_type="ebook", sku="b"),
        ],
    )
    self.assertEqual(price.items[0].discount, 500)
    self.assertEqual(price.items[1].discount, 0)
    self.assertEqual(price.total, 1500)

  def test_coupon_fixed_amount_in_order_currency(self):
    coupon = Coupon(
        code="FIVE",
        fixed=[
            FixedAmount(amount="5.00", currency="USD"),
            FixedAmount(amount="4.00", currency="EUR"),
        ],
    )
    usd = calculate_price(
        Settings(), None, "USA", "USD", coupon, [FakeItem(1000)]
    )
    sek = calculate_price(
        Settings(), None, "USA", "SEK", coupon, [FakeItem(1000)]
    )
    self.assertEqual(usd.discount, 500)
    self.assertEqual(sek.discount, 0)

  def test_stacked_discounts_never_go_below_zero(self):
    settings = Settings(
        member_discounts=[
            MemberDiscount(
                claims={"app_metadata.subscription.plan": "member"},
                percentage=60,
            )
        ]
    )
    coupon = Coupon(code="SIXTY", percentage=60)
    price = calculate_price(
        settings, MEMBER_CLAIMS, "USA", "USD", coupon, [FakeItem(100)]
    )
    self.assertEqual(price.discount, 120)
    self.assertEqual(price.items[0].total, 0)
    self.assertEqual(price.total, 0)

  def test_calculate_discount_is_capped(self):
    self.assertEqual(calculate_discount(100, 10, 0), 10)
    self.assertEqual(calculate_discount(100, 10, 20), 30)
    self.assertEqual(calculate_discount(100, 50, 80), 100)
    self.assertEqual(calculate_discount(100, 0, 0), 0)

  def test_calculate_discount_is_never_negative(self):
    self.assertEqual(calculate_discount(100, 0, -50), 0)
    self.assertEqual(calculate_discount(100, 10, -50), 0)
    self.assertEqual(calculate_discount(100, -10, 0), 0)

  def test_negative_fixed_coupon_does_not_raise_price(self):
    coupon = Coupon(
        code="MINUS",
        fixed=[FixedAmount(amount="-5.00", currency="USD")],
    )
    price = calculate_price(
        Settings(), None, "USA", "USD", coupon, [FakeItem(1000)]
    )
    self.assertEqual(price.discount, 0)
    self.assertEqual(price.total, 1000)

  def test_to_lowest_unit(self):
    self.assertEqual(to_lowest_unit("10.00"), 1000)
    self.assertEqual(to_lowest_unit("0.5"), 50)
    self.assertEqual(to_lowest_unit("12"), 1200)
    self.assertEqual(to_lowest_unit("not a number"), 0)


if __name__ == "__main__":
  absltest.main()
