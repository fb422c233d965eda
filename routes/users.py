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

"""User and address routes."""

from typing import List, Optional

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from fastapi import Request
from fastapi import Response
from models import AddressParams
from models import AddressResponse
from models import Pagination
from models import RequestIdentity
from models import UserResponse
from services.user_service import UserService

router = APIRouter()


@router.get(
    "/users",
    response_model=List[UserResponse],
    operation_id="list_users",
)
async def list_users(
    request: Request,
    response: Response,
    email: Optional[str] = Query(None),
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> List[UserResponse]:
  """List users with their number of orders."""
  page = await user_service.list_users(identity, email, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return page.items


@router.get(
    "/users/{user_id}",
    response_model=UserResponse,
    operation_id="get_user",
)
async def get_user(
    user_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> UserResponse:
  """Get a user by ID."""
  return await user_service.get_user(user_id, identity)


@router.delete(
    "/users/{user_id}",
    status_code=204,
    operation_id="delete_user",
)
async def delete_user(
    user_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> Response:
  """Delete a user with their orders and addresses."""
  await user_service.delete_user(user_id, identity)
  return Response(status_code=204)


@router.get(
    "/users/{user_id}/addresses",
    response_model=List[AddressResponse],
    operation_id="list_addresses",
)
async def list_addresses(
    user_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> List[AddressResponse]:
  """List the saved addresses of a user."""
  addresses = await user_service.list_addresses(user_id, identity)
  return [AddressResponse.model_validate(a) for a in addresses]


@router.post(
    "/users/{user_id}/addresses",
    response_model=AddressResponse,
    status_code=201,
    operation_id="create_address",
)
async def create_address(
    user_id: str = Path(...),
    params: AddressParams = Body(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> AddressResponse:
  """Save an address for a user."""
  address = await user_service.create_address(user_id, params, identity)
  return AddressResponse.model_validate(address)


@router.get(
    "/users/{user_id}/addresses/{addr_id}",
    response_model=AddressResponse,
    operation_id="get_address",
)
async def get_address(
    user_id: str = Path(...),
    addr_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> AddressResponse:
  """Get a saved address."""
  address = await user_service.get_address(user_id, addr_id, identity)
  return AddressResponse.model_validate(address)


@router.delete(
    "/users/{user_id}/addresses/{addr_id}",
    status_code=204,
    operation_id="delete_address",
)
async def delete_address(
    user_id: str = Path(...),
    addr_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    user_service: UserService = Depends(dependencies.get_user_service),
) -> Response:
  """Delete a saved address."""
  await user_service.delete_address(user_id, addr_id, identity)
  return Response(status_code=204)
