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

"""Coupon lookup routes."""

from typing import Dict

from config import CommerceServices
import dependencies
from exceptions import CouponNotFoundError
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from models import RequestIdentity
from services.coupons import Coupon
from services.coupons import CouponCache

router = APIRouter()


def _coupon_cache(services: CommerceServices) -> CouponCache:
  if services.coupon_cache is None:
    raise CouponNotFoundError("Coupon not found")
  return services.coupon_cache


@router.get(
    "/coupons/{code}",
    response_model=Coupon,
    operation_id="get_coupon",
)
async def get_coupon(
    code: str = Path(...),
    services: CommerceServices = Depends(dependencies.get_services),
) -> Coupon:
  """Get a coupon by code."""
  return await _coupon_cache(services).lookup(code)


@router.get(
    "/coupons",
    response_model=Dict[str, Coupon],
    operation_id="list_coupons",
)
async def list_coupons(
    identity: RequestIdentity = Depends(dependencies.get_identity),
    services: CommerceServices = Depends(dependencies.get_services),
) -> Dict[str, Coupon]:
  """List all coupons."""
  identity.require_admin()
  return await _coupon_cache(services).list()
