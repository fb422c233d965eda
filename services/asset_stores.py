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

"""Asset stores that turn stored download URLs into URLs a buyer can fetch."""

import abc
import logging

from exceptions import AssetStoreError
import httpx

logger = logging.getLogger(__name__)

NOOP_STORE = "noop"
NETLIFY_STORE = "netlify"
NETLIFY_API_HOST = "api.netlify.com"


class AssetStore(abc.ABC):
  """Signs download URLs."""

  @abc.abstractmethod
  async def sign_url(self, url: str) -> str:
    """Returns a URL the buyer can download the file from.

    Raises:
      AssetStoreError: If the URL could not be signed.
    """


class NoopAssetStore(AssetStore):
  """Hands out download URLs unchanged."""

  async def sign_url(self, url: str) -> str:
    return url


class NetlifyAssetStore(AssetStore):
  """Signs URLs of files stored with the Netlify API."""

  def __init__(self, token: str, http_client: httpx.AsyncClient):
    if not token:
      raise ValueError("No access token configured for Netlify")
    self.token = token
    self.http_client = http_client

  async def sign_url(self, url: str) -> str:
    try:
      parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
      raise AssetStoreError(f"Invalid download URL: {e}") from e
    if parsed.host != NETLIFY_API_HOST:
      raise AssetStoreError("Download URL didn't match Netlify API")

    try:
      response = await self.http_client.get(
          parsed.copy_with(scheme="https"),
          headers={"Authorization": f"Bearer {self.token}"},
      )
    except httpx.HTTPError as e:
      raise AssetStoreError(f"Error generating signature: {e}") from e
    if response.status_code != 200:
      raise AssetStoreError(f"Error generating signature: {response.text}")

    try:
      signature = response.json()
    except ValueError as e:
      raise AssetStoreError(f"Invalid signature response: {e}") from e
    if not isinstance(signature, dict) or not signature.get("url"):
      raise AssetStoreError("Signature response is missing the url")
    logger.debug("Signed download URL on %s", parsed.host)
    return signature["url"]
