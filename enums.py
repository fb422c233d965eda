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

"""Enumerations for the commerce server.

This module defines standard enums used throughout the server application
to represent the state of orders, payment transactions and discounts.
"""

import enum


class PaymentState(str, enum.Enum):
  PENDING = "pending"
  # Claimed by a payment whose charge is in flight.
  PROCESSING = "processing"
  PAID = "paid"


class FulfillmentState(str, enum.Enum):
  PENDING = "pending"
  SHIPPING = "shipping"
  SHIPPED = "shipped"


class OrderState(str, enum.Enum):
  PENDING = "pending"
  FAILED = "failed"
  COMPLETED = "completed"


class TransactionStatus(str, enum.Enum):
  PENDING = "pending"
  PAID = "paid"
  FAILED = "failed"


class TransactionType(str, enum.Enum):
  CHARGE = "charge"
  REFUND = "refund"


class DiscountType(str, enum.Enum):
  COUPON = "coupon"
  MEMBER = "member"


class HookType(str, enum.Enum):
  ORDER = "order"
  PAYMENT = "payment"
  REFUND = "refund"
