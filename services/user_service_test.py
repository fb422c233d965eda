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

"""Tests for users and their addresses."""

import asyncio

from absl.testing import absltest
import db
from exceptions import ResourceNotFoundError
from exceptions import UnauthorizedError
import httpx
from models import AddressParams
from models import LineItemParams
from models import OrderParams
from models import Pagination
from models import RequestIdentity
from services.order_service import OrderService
from services.user_service import UserService
from sqlalchemy import select
from test_utils import address
from test_utils import build_services
from test_utils import FakeStorefront
from test_utils import TempDatabase

ANONYMOUS = RequestIdentity()
ADA = RequestIdentity(user_id="user-1", email="ada@example.com")
GRACE = RequestIdentity(user_id="user-2", email="grace@example.com")
ADMIN = RequestIdentity(user_id="admin-1", is_admin=True)

BOOK_PATH = "/products/book/"


class UserServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.database = TempDatabase()
    asyncio.run(self.database.init_schema())
    self.storefront = FakeStorefront(
        prices={BOOK_PATH: 1200},
        downloads={
            BOOK_PATH: [{"title": "Book", "format": "pdf", "url": "https://f"}]
        },
    )
    self.services = build_services(
        self.database,
        httpx.AsyncClient(transport=httpx.MockTransport(self.storefront)),
    )

  def tearDown(self):
    asyncio.run(self.database.dispose())
    self.database.cleanup()
    super().tearDown()

  def _run(self, method, *args, **kwargs):
    async def run():
      async with self.database.session_factory() as session:
        return await getattr(UserService(session), method)(*args, **kwargs)

    return asyncio.run(run())

  def _order(self, identity: RequestIdentity) -> db.Order:
    params = OrderParams(
        email=identity.email,
        shipping_address=AddressParams(**address()),
        line_items=[
            LineItemParams(title="Book", sku="book", path=BOOK_PATH, price=1200)
        ],
    )

    async def create():
      async with self.database.session_factory() as session:
        return await OrderService(session, self.services).create_order(
            params, identity
        )

    return asyncio.run(create())

  def _all(self, model):
    async def rows():
      async with self.database.session_factory() as session:
        result = await session.execute(select(model))
        return result.scalars().all()

    return asyncio.run(rows())

  def _add_address(self, user_id, identity, country="USA"):
    return self._run(
        "create_address",
        user_id,
        AddressParams(**address(country)),
        identity,
    )

  def test_create_address_creates_own_user(self):
    created = self._add_address(ADA.user_id, ADA)

    user = self._run("get_user", ADA.user_id, ADA)
    self.assertEqual(user.email, "ada@example.com")
    self.assertEqual(user.order_count, 0)
    addresses = self._run("list_addresses", ADA.user_id, ADA)
    self.assertEqual([a.id for a in addresses], [created.id])
    self.assertEqual(addresses[0].user_id, ADA.user_id)

  def test_admin_cannot_add_address_to_unknown_user(self):
    with self.assertRaises(ResourceNotFoundError):
      self._add_address("no-such-user", ADMIN)
    self._add_address(ADA.user_id, ADA)
    self.assertEqual(
        self._add_address(ADA.user_id, ADMIN, "Germany").country, "Germany"
    )
    self.assertLen(self._run("list_addresses", ADA.user_id, ADMIN), 2)

  def test_users_only_access_themselves(self):
    self._add_address(ADA.user_id, ADA)
    for identity in (ANONYMOUS, GRACE):
      with self.subTest(user=identity.user_id):
        with self.assertRaises(UnauthorizedError):
          self._run("get_user", ADA.user_id, identity)
        with self.assertRaises(UnauthorizedError):
          self._run("list_addresses", ADA.user_id, identity)
        with self.assertRaises(UnauthorizedError):
          self._add_address(ADA.user_id, identity)
    with self.assertRaises(ResourceNotFoundError):
      self._run("get_user", "no-such-user", ADMIN)

  def test_get_address_of_another_user(self):
    self._add_address(GRACE.user_id, GRACE)
    created = self._add_address(ADA.user_id, ADA)
    self.assertEqual(
        self._run("get_address", ADA.user_id, created.id, ADA).id, created.id
    )
    with self.assertRaises(ResourceNotFoundError):
      self._run("get_address", GRACE.user_id, created.id, GRACE)

  def test_list_users(self):
    self._order(ADA)
    self._order(ADA)
    self._order(GRACE)

    page = self._run("list_users", ADMIN)
    self.assertEqual(page.total, 2)
    counts = {user.id: user.order_count for user in page.items}
    self.assertEqual(counts, {ADA.user_id: 2, GRACE.user_id: 1})

    page = self._run("list_users", ADMIN, email="grace@example.com")
    self.assertEqual([user.id for user in page.items], [GRACE.user_id])

    page = self._run("list_users", ADMIN, pagination=Pagination(per_page=1))
    self.assertEqual(page.total, 2)
    self.assertLen(page.items, 1)

    with self.assertRaises(UnauthorizedError):
      self._run("list_users", ADA)

  def test_delete_address_hides_it(self):
    created = self._add_address(ADA.user_id, ADA)
    with self.assertRaises(UnauthorizedError):
      self._run("delete_address", ADA.user_id, created.id, ADA)

    self._run("delete_address", ADA.user_id, created.id, ADMIN)

    self.assertEmpty(self._run("list_addresses", ADA.user_id, ADA))
    with self.assertRaises(ResourceNotFoundError):
      self._run("get_address", ADA.user_id, created.id, ADA)
    with self.assertRaises(ResourceNotFoundError):
      self._run("delete_address", ADA.user_id, created.id, ADMIN)
    self.assertLen(self._all(db.Address), 1)

  def test_delete_user(self):
    order = self._order(ADA)
    kept = self._order(GRACE)

    async def add_history():
      async with self.database.session_factory() as session:
        session.add(
            db.Transaction(
                order_id=order.id,
                user_id=ADA.user_id,
                amount=1200,
                currency="USD",
            )
        )
        session.add(
            db.DownloadEvent(
                download_id=order.downloads[0].id,
                order_id=order.id,
                user_id=ADA.user_id,
                ip="10.0.0.1",
            )
        )
        await session.commit()

    asyncio.run(add_history())
    with self.assertRaises(UnauthorizedError):
      self._run("delete_user", ADA.user_id, ADA)

    self._run("delete_user", ADA.user_id, ADMIN)

    with self.assertRaises(ResourceNotFoundError):
      self._run("get_user", ADA.user_id, ADMIN)
    self.assertEqual([o.id for o in self._all(db.Order)], [kept.id])
    self.assertEqual(
        {a.user_id for a in self._all(db.Address)}, {GRACE.user_id}
    )
    self.assertEqual(
        [d.order_id for d in self._all(db.Download)], [kept.id]
    )
    self.assertEqual(
        {item.order_id for item in self._all(db.LineItem)}, {kept.id}
    )
    self.assertEmpty(self._all(db.DownloadEvent))
    self.assertEqual(
        [t.order_id for t in self._all(db.Transaction)], [order.id]
    )
    with self.assertRaises(ResourceNotFoundError):
      self._run("delete_user", ADA.user_id, ADMIN)


if __name__ == "__main__":
  absltest.main()
