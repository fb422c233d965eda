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

"""Route exposing the storefront's pricing settings."""

from config import CommerceServices
import dependencies
from fastapi import APIRouter
from fastapi import Depends
from services.calculator import Settings
from services.storefront import fetch_settings

router = APIRouter()


@router.get(
    "/settings",
    response_model=Settings,
    operation_id="get_settings",
)
async def get_settings(
    services: CommerceServices = Depends(dependencies.get_services),
) -> Settings:
  """Get the pricing settings the server applies to orders."""
  settings = await fetch_settings(
      services.http_client, services.config.settings_url
  )
  return settings or Settings()
