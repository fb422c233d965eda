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

"""Shared fixtures for the commerce server tests."""

import asyncio
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Union

from config import CommerceServices
from config import Configuration
import db
from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
import httpx
from jose import jwt
from services.asset_stores import AssetStore
from services.coupons import CouponCache
from services.payments import Charger
from services.payments import PaymentProvider
from services.payments import PreauthorizationResult
from services.payments import Preauthorizer
from services.payments import Refunder
from services.payments import RequestBody
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

SITE_URL = "https://shop.example.com"
SETTINGS_PATH = "/commerce/settings.json"
JWT_SECRET = "test-jwt-secret"


def product_page(
    price: Any, downloads: Optional[List[Dict[str, Any]]] = None
) -> str:
  head = (
      "<title>Product</title>"
      f'<meta name="product:price:amount" content="{price}">'
  )
  if downloads is not None:
    head += (
        '<script id="commerce-product" type="application/json">'
        + json.dumps({"downloads": downloads})
        + "</script>"
    )
  return f"<html><head>{head}</head><body></body></html>"


def make_token(
    user_id: str,
    email: Optional[str] = None,
    roles: Optional[List[str]] = None,
    **claims: Any,
) -> str:
  payload: Dict[str, Any] = {"sub": user_id, **claims}
  if email:
    payload["email"] = email
  if roles:
    payload.setdefault("app_metadata", {})["roles"] = roles
  return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


class FakeStorefront:
  """MockTransport handler serving settings, product pages and webhooks."""

  def __init__(
      self,
      prices: Optional[Dict[str, Any]] = None,
      settings: Optional[Dict[str, Any]] = None,
      downloads: Optional[Dict[str, List[Dict[str, Any]]]] = None,
  ):
    self.prices = dict(prices or {})
    self.settings = settings
    self.downloads = dict(downloads or {})
    self.requests: List[httpx.Request] = []

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    path = request.url.path
    if path == SETTINGS_PATH:
      if self.settings is None:
        return httpx.Response(404)
      return httpx.Response(200, json=self.settings)
    if path in self.prices:
      return httpx.Response(
          200,
          text=product_page(self.prices[path], self.downloads.get(path)),
      )
    return httpx.Response(404)

  def requests_to(self, path: str) -> List[httpx.Request]:
    return [r for r in self.requests if r.url.path == path]


class FakePaymentProvider(PaymentProvider):
  """In-memory provider recording charges and refunds.

  `fail_with` is either a gateway message, raised as `PaymentProviderError`,
  or an exception raised as is.
  """

  def __init__(
      self,
      fail_with: Optional[Union[str, Exception]] = None,
      delay: float = 0.0,
  ):
    self.fail_with = fail_with
    self.delay = delay
    self.charges: List[Dict[str, Any]] = []
    self.refunds: List[Dict[str, Any]] = []

  @property
  def name(self) -> str:
    return "fake"

  def new_charger(self, body: RequestBody) -> Charger:
    token = body.get("fake_token")
    if not token:
      raise InvalidRequestError("Payments requires a fake_token")

    async def charge(amount: int, currency: str) -> str:
      if self.delay:
        await asyncio.sleep(self.delay)
      self._maybe_fail()
      self.charges.append(
          {"token": token, "amount": amount, "currency": currency}
      )
      return f"ch_{len(self.charges)}"

    return charge

  def new_refunder(self, body: RequestBody) -> Refunder:
    async def refund(transaction_id: str, amount: int, currency: str) -> str:
      self._maybe_fail()
      self.refunds.append(
          {"charge": transaction_id, "amount": amount, "currency": currency}
      )
      return f"re_{len(self.refunds)}"

    return refund

  def _maybe_fail(self) -> None:
    if isinstance(self.fail_with, Exception):
      raise self.fail_with
    if self.fail_with:
      raise PaymentProviderError(self.fail_with)

  def new_preauthorizer(
      self, body: RequestBody, site_url: str
  ) -> Preauthorizer:
    async def preauthorize(
        amount: int, currency: str, description: str
    ) -> PreauthorizationResult:
      return PreauthorizationResult(id=f"pre_{amount}_{currency}")

    return preauthorize


class TempDatabase:
  """A throwaway SQLite database in WAL mode."""

  def __init__(self, busy_timeout: float = db.BUSY_TIMEOUT_SECONDS) -> None:
    self.test_dir = tempfile.mkdtemp()
    self.path = os.path.join(self.test_dir, "test_commerce.db")
    self.engine = create_async_engine(
        f"sqlite+aiosqlite:///{self.path}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": busy_timeout},
    )
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

  async def init_schema(self) -> None:
    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))
    async with self.engine.begin() as conn:
      await conn.run_sync(db.Base.metadata.create_all)

  def manager(self) -> db.DatabaseManager:
    manager = db.DatabaseManager()
    manager.engine = self.engine
    manager.session_factory = self.session_factory
    return manager

  async def dispose(self) -> None:
    await self.engine.dispose()

  def cleanup(self) -> None:
    shutil.rmtree(self.test_dir)


def build_services(
    database: TempDatabase,
    http_client: httpx.AsyncClient,
    provider: Optional[PaymentProvider] = None,
    coupon_cache: Optional[CouponCache] = None,
    asset_store: Optional[AssetStore] = None,
    **config_overrides: Any,
) -> CommerceServices:
  """Creates a service container over test collaborators."""
  config = Configuration(
      db_path=database.path,
      site_url=SITE_URL,
      settings_path=SETTINGS_PATH,
      jwt_secret=JWT_SECRET,
      **config_overrides,
  )
  return CommerceServices(
      config,
      database.manager(),
      http_client,
      provider or FakePaymentProvider(),
      coupon_cache=coupon_cache,
      asset_store=asset_store,
  )


def address(country: str = "USA") -> Dict[str, str]:
  return {
      "name": "Ada Lovelace",
      "address1": "12 Analytical Row",
      "city": "London",
      "country": country,
      "zip": "N1 9GU",
  }
