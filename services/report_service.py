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

"""Sales reports over paid orders."""

import datetime
from typing import List, Optional

import db
from exceptions import InvalidRequestError
from models import ProductsRow
from models import RequestIdentity
from models import SalesRow
from sqlalchemy.ext.asyncio import AsyncSession


def parse_time(value: Optional[str], name: str) -> Optional[datetime.datetime]:
  """Parses a `from`/`to` query value given as unix seconds or ISO 8601."""
  if not value:
    return None
  try:
    if value.isdigit():
      parsed = datetime.datetime.fromtimestamp(
          int(value), tz=datetime.timezone.utc
      )
    else:
      parsed = datetime.datetime.fromisoformat(value)
  except ValueError as e:
    raise InvalidRequestError(f"Invalid {name} parameter: {value}") from e
  if parsed.tzinfo is not None:
    parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
  return parsed


class ReportService:
  """Admin-only sales and product reports."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def sales(
      self,
      identity: RequestIdentity,
      start: Optional[str] = None,
      end: Optional[str] = None,
  ) -> List[SalesRow]:
    identity.require_admin()
    rows = await db.sales_report(
        self.session, parse_time(start, "from"), parse_time(end, "to")
    )
    return [SalesRow(**row) for row in rows]

  async def products(
      self,
      identity: RequestIdentity,
      start: Optional[str] = None,
      end: Optional[str] = None,
  ) -> List[ProductsRow]:
    identity.require_admin()
    rows = await db.products_report(
        self.session, parse_time(start, "from"), parse_time(end, "to")
    )
    return [ProductsRow(**row) for row in rows]
