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

"""Order management routes for the commerce server."""

from typing import List, Optional

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from fastapi import Request
from fastapi import Response
from models import OrderParams
from models import OrderResponse
from models import OrderUpdateParams
from models import Pagination
from models import RequestIdentity
from services.order_service import OrderService

router = APIRouter()


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=201,
    operation_id="create_order",
)
async def create_order(
    params: OrderParams = Body(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderResponse:
  """Create an order priced by the server."""
  order = await order_service.create_order(params, identity)
  return OrderResponse.model_validate(order)


@router.get(
    "/orders",
    response_model=List[OrderResponse],
    operation_id="list_orders",
)
async def list_orders(
    request: Request,
    response: Response,
    user_id: Optional[str] = Query(None),
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> List[OrderResponse]:
  """List the caller's orders."""
  page = await order_service.list_orders(identity, user_id, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return [OrderResponse.model_validate(order) for order in page.items]


@router.get(
    "/orders/{id}",
    response_model=OrderResponse,
    operation_id="get_order",
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderResponse:
  """Get an order by ID."""
  order = await order_service.get_order(order_id, identity)
  return OrderResponse.model_validate(order)


@router.put(
    "/orders/{id}",
    response_model=OrderResponse,
    operation_id="update_order",
)
async def update_order(
    order_id: str = Path(..., alias="id"),
    params: OrderUpdateParams = Body(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderResponse:
  """Update the details of a pending order."""
  order = await order_service.update_order(order_id, params, identity)
  return OrderResponse.model_validate(order)
