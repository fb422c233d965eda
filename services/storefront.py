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

"""Client for the storefront's published pricing settings."""

import logging
from typing import Optional

from exceptions import UpstreamError
import httpx
from services.calculator import Settings

logger = logging.getLogger(__name__)


async def fetch_settings(
    http_client: httpx.AsyncClient, settings_url: str
) -> Optional[Settings]:
  """Fetches the storefront settings.

  A non-200 response means the storefront publishes no settings and yields
  None.

  Args:
    http_client: Shared HTTP client.
    settings_url: Absolute URL of the settings document.

  Returns:
    The parsed settings, or None.

  Raises:
    UpstreamError: If the storefront is unreachable or returns bad JSON.
  """
  try:
    response = await http_client.get(settings_url)
  except httpx.HTTPError as e:
    raise UpstreamError(f"Error loading site settings: {e}") from e

  if response.status_code != 200:
    logger.info(
        "No settings at %s (status %d)", settings_url, response.status_code
    )
    return None

  try:
    return Settings.model_validate(response.json())
  except ValueError as e:
    raise UpstreamError(f"Error parsing site settings: {e}") from e
