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

"""Request and response models for the commerce REST API.

Response models are built from the database rows with `from_attributes`.
"""

import datetime
from typing import Any, Dict, List, Optional

from enums import FulfillmentState
from enums import OrderState
from exceptions import UnauthorizedError
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class AddressParams(BaseModel):
  name: str = Field(min_length=1)
  company: Optional[str] = None
  address1: str = Field(min_length=1)
  address2: Optional[str] = None
  city: str = Field(min_length=1)
  country: str = Field(min_length=1)
  state: Optional[str] = None
  zip: str = Field(min_length=1)


class TaxableItemParams(BaseModel):
  type: str
  price: int = Field(ge=0)


class LineItemParams(BaseModel):
  title: str = ""
  sku: str = Field(min_length=1)
  type: str = ""
  description: Optional[str] = None
  path: str = Field(min_length=1)
  price: int = Field(ge=0)
  vat: int = Field(0, ge=0)
  quantity: int = Field(1, ge=1)
  taxable_items: List[TaxableItemParams] = Field(default_factory=list)


class OrderParams(BaseModel):
  """Parameters for creating an order."""

  session_id: Optional[str] = None
  email: Optional[str] = None
  currency: str = "USD"
  shipping_address: Optional[AddressParams] = None
  shipping_address_id: Optional[str] = None
  billing_address: Optional[AddressParams] = None
  billing_address_id: Optional[str] = None
  vat_number: Optional[str] = None
  coupon: Optional[str] = None
  meta: Dict[str, Any] = Field(default_factory=dict)
  line_items: List[LineItemParams] = Field(min_length=1)


class PaymentParams(BaseModel):
  """Amount and currency of a charge or refund.

  Extra fields carry the payment provider's token, e.g. `stripe_token`.
  """

  model_config = ConfigDict(extra="allow")

  amount: int = Field(ge=0)
  currency: str = "USD"


class PreauthorizeParams(BaseModel):
  amount: int = Field(ge=0)
  currency: str = "USD"
  description: str = ""


class Pagination(BaseModel):
  """Page selection of a list endpoint."""

  page: int = Field(1, ge=1)
  per_page: int = Field(50, ge=1, le=200)


class OrderUpdateParams(BaseModel):
  """Admin changes to an existing order. Unset fields are left alone."""

  email: Optional[str] = None
  state: Optional[OrderState] = None
  fulfillment_state: Optional[FulfillmentState] = None
  currency: Optional[str] = None
  vat_number: Optional[str] = None
  shipping_address: Optional[AddressParams] = None
  shipping_address_id: Optional[str] = None
  billing_address: Optional[AddressParams] = None
  billing_address_id: Optional[str] = None
  meta: Optional[Dict[str, Any]] = None


class AddressResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  user_id: Optional[str] = None
  name: Optional[str] = None
  company: Optional[str] = None
  address1: Optional[str] = None
  address2: Optional[str] = None
  city: Optional[str] = None
  country: Optional[str] = None
  state: Optional[str] = None
  zip: Optional[str] = None
  created_at: Optional[datetime.datetime] = None


class LineItemResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: int
  title: Optional[str] = None
  sku: Optional[str] = None
  type: Optional[str] = None
  description: Optional[str] = None
  path: Optional[str] = None
  price: int
  vat: int = 0
  quantity: int
  taxable_items: Optional[List[TaxableItemParams]] = Field(
      None, validation_alias="taxable_items_data"
  )
  calculation: Optional[Dict[str, Any]] = None


class OrderNoteResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: int
  user_id: Optional[str] = None
  text: str
  created_at: datetime.datetime


class OrderResponse(BaseModel):
  """An order as returned by the API and sent to order webhooks."""

  model_config = ConfigDict(from_attributes=True)

  id: str
  user_id: Optional[str] = None
  email: Optional[str] = None
  currency: str
  subtotal: int
  taxes: int
  discount: int
  total: int
  payment_state: str
  fulfillment_state: str
  state: str
  payment_processor: Optional[str] = None
  coupon_code: Optional[str] = None
  coupon: Optional[Dict[str, Any]] = None
  vat_number: Optional[str] = None
  meta: Optional[Dict[str, Any]] = None
  line_items: List[LineItemResponse] = Field(default_factory=list)
  notes: List[OrderNoteResponse] = Field(default_factory=list)
  shipping_address: Optional[AddressResponse] = None
  billing_address: Optional[AddressResponse] = None
  created_at: datetime.datetime
  updated_at: Optional[datetime.datetime] = None


class TransactionResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  order_id: str
  user_id: Optional[str] = None
  processor_id: Optional[str] = None
  amount: int
  amount_reversed: int = 0
  currency: str
  failure_code: Optional[str] = None
  failure_description: Optional[str] = None
  status: str
  type: str
  created_at: datetime.datetime


class UserResponse(BaseModel):
  model_config = ConfigDict(from_attributes=True)

  id: str
  email: Optional[str] = None
  created_at: Optional[datetime.datetime] = None
  order_count: int = 0


class DownloadResponse(BaseModel):
  """A download of a paid order. The file URL is only handed out signed."""

  model_config = ConfigDict(from_attributes=True)

  id: str
  order_id: str
  line_item_id: Optional[int] = None
  title: Optional[str] = None
  format: Optional[str] = None
  download_count: int = 0
  created_at: datetime.datetime


class DownloadURLResponse(DownloadResponse):
  url: str


class SalesRow(BaseModel):
  total: int
  subtotal: int
  taxes: int
  currency: str


class ProductsRow(BaseModel):
  sku: Optional[str] = None
  path: Optional[str] = None
  total: int
  currency: str


class RequestIdentity(BaseModel):
  """The authenticated caller of a request, if any."""

  user_id: Optional[str] = None
  email: Optional[str] = None
  claims: Optional[Dict[str, Any]] = None
  is_admin: bool = False

  @property
  def authenticated(self) -> bool:
    return self.user_id is not None

  def require_admin(self) -> None:
    if not self.is_admin:
      raise UnauthorizedError("Admin permissions required")
