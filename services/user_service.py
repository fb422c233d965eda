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

"""User service for user accounts and their saved addresses.

Users are created the first time they place an order or save an address.
Users can read their own account and addresses. Admins can read every user,
delete users and delete addresses. Deleting a user removes their orders and
addresses but keeps their transactions. Deleted addresses are only hidden so
orders placed with them keep their address.
"""

import logging
from typing import Dict, List, Optional

import db
from exceptions import ResourceNotFoundError
from exceptions import UnauthorizedError
from models import AddressParams
from models import Pagination
from models import RequestIdentity
from models import UserResponse
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _require_self_or_admin(user_id: str, identity: RequestIdentity) -> None:
  if not identity.authenticated:
    raise UnauthorizedError("This endpoint requires authentication")
  if not identity.is_admin and identity.user_id != user_id:
    raise UnauthorizedError("You can only access your own account")


def _user_response(user: db.User, counts: Dict[str, int]) -> UserResponse:
  response = UserResponse.model_validate(user)
  response.order_count = counts.get(user.id, 0)
  return response


class UserService:
  """Service for users and addresses."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def _user(self, user_id: str) -> db.User:
    user = await db.get_user(self.session, user_id)
    if user is None:
      raise ResourceNotFoundError("Couldn't find a user with that ID")
    return user

  async def list_users(
      self,
      identity: RequestIdentity,
      email: Optional[str] = None,
      pagination: Optional[Pagination] = None,
  ) -> db.Page:
    """Lists users with their number of orders, optionally by email."""
    identity.require_admin()
    pagination = pagination or Pagination()
    page = await db.list_users(
        self.session, email, pagination.page, pagination.per_page
    )
    counts = await db.count_orders_by_user(
        self.session, (user.id for user in page.items)
    )
    return db.Page(
        [_user_response(user, counts) for user in page.items], page.total
    )

  async def get_user(
      self, user_id: str, identity: RequestIdentity
  ) -> UserResponse:
    _require_self_or_admin(user_id, identity)
    user = await self._user(user_id)
    counts = await db.count_orders_by_user(self.session, [user.id])
    return _user_response(user, counts)

  async def delete_user(
      self, user_id: str, identity: RequestIdentity
  ) -> None:
    identity.require_admin()
    try:
      user = await self._user(user_id)
      await db.delete_user(self.session, user)
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e
    logger.info("User %s deleted by %s", user_id, identity.user_id)

  async def list_addresses(
      self, user_id: str, identity: RequestIdentity
  ) -> List[db.Address]:
    _require_self_or_admin(user_id, identity)
    await self._user(user_id)
    return await db.list_addresses(self.session, user_id)

  async def get_address(
      self, user_id: str, address_id: str, identity: RequestIdentity
  ) -> db.Address:
    _require_self_or_admin(user_id, identity)
    address = await db.get_address(self.session, address_id)
    if address is None or address.user_id != user_id:
      raise ResourceNotFoundError("Couldn't find an address with that ID")
    return address

  async def create_address(
      self,
      user_id: str,
      params: AddressParams,
      identity: RequestIdentity,
  ) -> db.Address:
    """Saves an address for a user.

    The caller's own user is created on first sight. Admins can only add
    addresses to existing users.
    """
    _require_self_or_admin(user_id, identity)
    try:
      if identity.user_id == user_id:
        await db.get_or_create_user(self.session, user_id, identity.email)
      else:
        await self._user(user_id)
      address = db.Address(
          id=db.new_id(), user_id=user_id, **params.model_dump()
      )
      self.session.add(address)
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e
    return address

  async def delete_address(
      self, user_id: str, address_id: str, identity: RequestIdentity
  ) -> None:
    identity.require_admin()
    try:
      address = await self.get_address(user_id, address_id, identity)
      address.deleted_at = db.utcnow()
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e
