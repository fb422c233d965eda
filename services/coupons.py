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

"""Coupons and the time-bounded cache over the coupon feed.

The feed is a JSON document of the form `{"coupons": {code: {...}}}` served
from a configurable URL, optionally protected with HTTP Basic auth. The whole
feed is refetched when the cache is older than `CACHE_TIME_SECONDS`. A failed
refresh raises even if coupons from an earlier fetch are still held.
"""

import asyncio
import datetime
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional
import urllib.parse

from exceptions import CouponNotFoundError
from exceptions import UpstreamError
import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from services.calculator import FixedAmount
from services.calculator import to_lowest_unit
from services.claims import has_claims

logger = logging.getLogger(__name__)

CACHE_TIME_SECONDS = 60.0


def _as_utc(value: datetime.datetime) -> datetime.datetime:
  if value.tzinfo is None:
    return value.replace(tzinfo=datetime.timezone.utc)
  return value


class Coupon(BaseModel):
  """A discount code published in the coupon feed."""

  model_config = ConfigDict(extra="ignore")

  code: str = ""
  start_date: Optional[datetime.datetime] = None
  end_date: Optional[datetime.datetime] = None
  percentage: int = 0
  fixed: List[FixedAmount] = Field(default_factory=list)
  product_types: List[str] = Field(default_factory=list)
  products: List[str] = Field(default_factory=list)
  claims: Dict[str, str] = Field(default_factory=dict)

  def valid(self, now: Optional[datetime.datetime] = None) -> bool:
    """Checks that `now` is within the coupon's validity window."""
    now = _as_utc(now or datetime.datetime.now(datetime.timezone.utc))
    if self.start_date is not None and now < _as_utc(self.start_date):
      return False
    if self.end_date is not None and now > _as_utc(self.end_date):
      return False
    return True

  def valid_for_type(self, product_type: str) -> bool:
    return not self.product_types or product_type in self.product_types

  def valid_for_product(self, product_sku: str) -> bool:
    return not self.products or product_sku in self.products

  def valid_for_claims(self, claims: Optional[Mapping[str, Any]]) -> bool:
    return has_claims(claims, self.claims)

  def percentage_discount(self) -> int:
    return self.percentage

  def fixed_discount(self, currency: str) -> int:
    for fixed in self.fixed:
      if fixed.currency == currency:
        return to_lowest_unit(fixed.amount)
    return 0


class CouponCache:
  """Caches the coupon feed in memory for a minute at a time."""

  def __init__(
      self,
      url: str,
      http_client: httpx.AsyncClient,
      user: Optional[str] = None,
      password: Optional[str] = None,
      cache_time: float = CACHE_TIME_SECONDS,
      clock: Callable[[], float] = time.monotonic,
  ):
    self.url = url
    self.http_client = http_client
    self.user = user
    self.password = password
    self.cache_time = cache_time
    self.clock = clock
    self._coupons: Dict[str, Coupon] = {}
    self._last_fetch: Optional[float] = None
    # Guards the swap of the cached coupons, not the fetch.
    self._lock = asyncio.Lock()

  def _expired(self) -> bool:
    if self._last_fetch is None:
      return True
    return self.clock() >= self._last_fetch + self.cache_time

  async def _load(self) -> None:
    """Fetches the coupon feed and replaces the cached coupons."""
    auth = None
    if self.user:
      auth = (self.user, self.password or "")

    try:
      response = await self.http_client.get(self.url, auth=auth)
    except httpx.HTTPError as e:
      raise UpstreamError(
          f"Failed to make request for coupon information: {e}"
      ) from e

    if response.status_code != 200:
      raise UpstreamError(f"Coupon URL returned {response.status_code}")

    try:
      raw_coupons = response.json().get("coupons") or {}
      coupons = {
          key: Coupon.model_validate(value)
          for key, value in raw_coupons.items()
      }
    except (ValueError, AttributeError) as e:
      raise UpstreamError(f"Failed to parse coupon response: {e}") from e

    for key, coupon in coupons.items():
      if not coupon.code:
        coupon.code = key

    async with self._lock:
      self._coupons = coupons
      self._last_fetch = self.clock()
    logger.info("Loaded %d coupons from %s", len(coupons), self.url)

  async def lookup(self, code: str) -> Coupon:
    """Returns the coupon with the given code.

    Raises:
      CouponNotFoundError: If the feed has no such coupon.
      UpstreamError: If the feed could not be refreshed.
    """
    if self._expired():
      await self._load()

    coupon = self._coupons.get(code)
    if coupon is None:
      raise CouponNotFoundError("Coupon not found")
    return coupon

  async def list(self) -> Dict[str, Coupon]:
    if self._expired():
      await self._load()
    return dict(self._coupons)


def resolve_url(site_url: str, url: str) -> str:
  """Makes a relative URL absolute using the site's scheme and host."""
  parsed = urllib.parse.urlsplit(url)
  if parsed.scheme and parsed.netloc:
    return url
  site = urllib.parse.urlsplit(site_url)
  path = parsed.path if parsed.path.startswith("/") else "/" + parsed.path
  return urllib.parse.urlunsplit(
      (site.scheme, site.netloc, path, parsed.query, parsed.fragment)
  )


def new_coupon_cache(
    coupons_url: Optional[str],
    site_url: str,
    http_client: httpx.AsyncClient,
    user: Optional[str] = None,
    password: Optional[str] = None,
) -> Optional[CouponCache]:
  """Creates a coupon cache, or returns None when no feed is configured."""
  if not coupons_url:
    return None
  return CouponCache(
      resolve_url(site_url, coupons_url),
      http_client,
      user=user,
      password=password,
  )
