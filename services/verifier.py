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

"""Verifies line item prices against the live storefront.

Every line item points at a product page on the storefront. The page
advertises the product price in lowest currency units through a
`<meta name="product:price:amount" content="...">` tag, which must match the
price submitted with the order.

A page may also embed product metadata as JSON in a
`<script id="commerce-product" type="application/json">` tag. Its
`downloads` list names the files a buyer unlocks by paying for the item.

Lookups run concurrently with at most `MAX_CONCURRENT_LOOKUPS` in flight.
After the first failure, lookups that have not started yet are skipped.
Lookups already in flight run to completion, and all of them are awaited
before the first error is raised.
"""

import asyncio
from html.parser import HTMLParser
import logging
import re
from typing import List, Optional, Protocol, Sequence, Tuple

from exceptions import CommerceError
from exceptions import UpstreamError
from exceptions import VerificationError
import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

logger = logging.getLogger(__name__)

MAX_CONCURRENT_LOOKUPS = 10
PRICE_META_NAME = "product:price:amount"
PRODUCT_SCRIPT_ID = "commerce-product"

_AMOUNT_RE = re.compile(r"[0-9]+")


class VerifiableItem(Protocol):
  title: str
  path: str
  price: int


class ProductDownload(BaseModel):
  model_config = ConfigDict(extra="ignore")

  title: str = ""
  format: Optional[str] = None
  url: str = Field(min_length=1)


class ProductMetadata(BaseModel):
  """Metadata a product page publishes about the product."""

  model_config = ConfigDict(extra="ignore")

  downloads: List[ProductDownload] = Field(default_factory=list)


class _ProductPageParser(HTMLParser):
  """Extracts the first price meta tag and the product metadata script."""

  def __init__(self) -> None:
    super().__init__()
    self.amount: Optional[str] = None
    self.metadata: Optional[str] = None
    self._in_metadata = False

  def handle_starttag(
      self, tag: str, attrs: List[Tuple[str, Optional[str]]]
  ) -> None:
    values = dict(attrs)
    if tag == "meta" and self.amount is None:
      if PRICE_META_NAME in (values.get("name"), values.get("property")):
        self.amount = values.get("content") or ""
    elif tag == "script" and self.metadata is None:
      classes = (values.get("class") or "").split()
      if values.get("id") == PRODUCT_SCRIPT_ID or PRODUCT_SCRIPT_ID in classes:
        self.metadata = ""
        self._in_metadata = True

  def handle_data(self, data: str) -> None:
    if self._in_metadata:
      self.metadata += data

  def handle_endtag(self, tag: str) -> None:
    if tag == "script":
      self._in_metadata = False


def _parse(html: str) -> _ProductPageParser:
  parser = _ProductPageParser()
  parser.feed(html)
  parser.close()
  return parser


def _price(amount: Optional[str]) -> Optional[int]:
  if amount is None:
    return None
  amount = amount.strip()
  if not _AMOUNT_RE.fullmatch(amount):
    return None
  return int(amount)


def extract_price(html: str) -> Optional[int]:
  """Returns the advertised price, or None if absent or malformed."""
  return _price(_parse(html).amount)


def _metadata(script: Optional[str]) -> ProductMetadata:
  if script is None or not script.strip():
    return ProductMetadata()
  return ProductMetadata.model_validate_json(script)


def product_url(site_url: str, path: str) -> str:
  return site_url.rstrip("/") + "/" + path.lstrip("/")


async def verify_line_item(
    item: VerifiableItem, site_url: str, http_client: httpx.AsyncClient
) -> ProductMetadata:
  """Checks one line item against its product page and returns its metadata."""
  url = product_url(site_url, item.path)
  try:
    response = await http_client.get(url)
  except httpx.HTTPError as e:
    raise UpstreamError(
        f"Failed to fetch product page for {item.title}: {e}"
    ) from e

  if not response.is_success:
    raise VerificationError(
        f"Failed to fetch product page for {item.title}: status"
        f" {response.status_code}"
    )

  page = _parse(response.text)
  price = _price(page.amount)
  if price is None:
    raise VerificationError(f"No valid price found for {item.title}")
  if price != item.price:
    raise VerificationError(
        f"Price for {item.title} doesn't match the storefront: {item.price}"
        f" vs {price}"
    )

  try:
    return _metadata(page.metadata)
  except ValidationError as e:
    raise VerificationError(
        f"Invalid product metadata for {item.title}: {e}"
    ) from e


async def verify_line_items(
    items: Sequence[VerifiableItem],
    site_url: str,
    http_client: httpx.AsyncClient,
    max_concurrency: int = MAX_CONCURRENT_LOOKUPS,
) -> List[ProductMetadata]:
  """Verifies the prices of all line items.

  Args:
    items: Line items with a title, storefront path and unit price.
    site_url: Base URL of the storefront.
    http_client: Shared HTTP client.
    max_concurrency: Maximum number of product pages fetched at once.

  Returns:
    The product metadata of every item, in the order of `items`.

  Raises:
    VerificationError: If a page is missing or advertises another price.
    UpstreamError: If the storefront could not be reached.
  """
  semaphore = asyncio.Semaphore(max_concurrency)
  lock = asyncio.Lock()
  errors: List[CommerceError] = []
  results: List[ProductMetadata] = [ProductMetadata() for _ in items]

  async def verify(index: int, item: VerifiableItem) -> None:
    async with semaphore:
      async with lock:
        if errors:
          return
      try:
        results[index] = await verify_line_item(item, site_url, http_client)
      except CommerceError as e:
        logger.info("Line item verification failed: %s", e.message)
        async with lock:
          if not errors:
            errors.append(e)

  await asyncio.gather(*(verify(i, item) for i, item in enumerate(items)))
  if errors:
    raise errors[0]
  return results
