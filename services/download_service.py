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

"""Download service for files unlocked by paid orders.

Downloads are copied from the product pages into the order when it is
created. They are only listed and handed out once the order is paid, and
only to the order's owner or an admin when the order belongs to a user. A
download URL is signed by the configured asset store every time it is
requested. Each request is logged with the caller's IP, and an order whose
files were fetched from too many IPs within a day is refused.
"""

import datetime
import logging
from typing import Optional, Tuple

from config import CommerceServices
import db
from enums import PaymentState
from exceptions import ResourceNotFoundError
from exceptions import UnauthorizedError
from models import Pagination
from models import RequestIdentity
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

MAX_IPS_PER_DAY = 50
IP_WINDOW = datetime.timedelta(hours=24)


def can_access_downloads(order: db.Order, identity: RequestIdentity) -> bool:
  if order.user_id is None or identity.is_admin:
    return True
  return order.user_id == identity.user_id


class DownloadService:
  """Service for listing and signing downloads."""

  def __init__(self, session: AsyncSession, services: CommerceServices):
    self.session = session
    self.asset_store = services.asset_store

  async def list_for_order(
      self,
      order_id: str,
      identity: RequestIdentity,
      pagination: Optional[Pagination] = None,
  ) -> db.Page:
    order = await db.get_order(self.session, order_id)
    if order is None:
      raise ResourceNotFoundError("Download order not found")
    if not can_access_downloads(order, identity):
      raise UnauthorizedError(
          "You don't have permission to access this order"
      )
    if order.payment_state != PaymentState.PAID.value:
      raise UnauthorizedError("This order has not been completed yet")
    pagination = pagination or Pagination()
    return await db.list_paid_downloads(
        self.session,
        order_id=order.id,
        page=pagination.page,
        per_page=pagination.per_page,
    )

  async def list_for_user(
      self, identity: RequestIdentity, pagination: Optional[Pagination] = None
  ) -> db.Page:
    """Lists the downloads of all of the caller's paid orders."""
    if not identity.authenticated:
      raise UnauthorizedError("Listing all downloads requires authentication")
    pagination = pagination or Pagination()
    return await db.list_paid_downloads(
        self.session,
        user_id=identity.user_id,
        page=pagination.page,
        per_page=pagination.per_page,
    )

  async def download_url(
      self, download_id: str, identity: RequestIdentity, ip: str
  ) -> Tuple[db.Download, str]:
    """Signs the URL of a download and logs the request.

    Args:
      download_id: The download to fetch.
      identity: The caller.
      ip: The caller's IP address.

    Returns:
      The download, with its counter updated, and the signed URL.

    Raises:
      ResourceNotFoundError: If the download or its order does not exist.
      UnauthorizedError: If the caller may not fetch the download, the order
        is unpaid or the download was fetched from too many IPs today.
      AssetStoreError: If the asset store could not sign the URL.
    """
    download = await db.get_download(self.session, download_id)
    if download is None:
      raise ResourceNotFoundError("Download not found")
    order = await db.get_order(self.session, download.order_id)
    if order is None:
      raise ResourceNotFoundError("Download order not found")
    if not can_access_downloads(order, identity):
      raise UnauthorizedError("Not Authorized to access this download")
    if order.payment_state != PaymentState.PAID.value:
      raise UnauthorizedError("This download has not been paid yet")

    ips = await db.count_download_ips(
        self.session, order.id, db.utcnow() - IP_WINDOW
    )
    if ips > MAX_IPS_PER_DAY:
      logger.warning("Order %s was downloaded from %d IPs", order.id, ips)
      raise UnauthorizedError(
          "This download has been accessed from too many IPs within the"
          " last day"
      )

    signed_url = await self.asset_store.sign_url(download.url)

    try:
      await db.record_download(self.session, download, ip, identity.user_id)
      await self.session.commit()
    except Exception as e:
      await self.session.rollback()
      raise e
    await self.session.refresh(download)
    return download, signed_url
