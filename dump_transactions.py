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

"""Utility script to dump payment transactions.

This script reads from the configured commerce SQLite database and prints
every stored charge and refund grouped by order, including failures. It is
useful for debugging and verifying the state of the server.

Usage:
  uv run dump_transactions.py --db_path=...
"""

import asyncio
import itertools
import sys
from absl import app as absl_app
from absl import flags
from db import Order
from db import Transaction
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
try:
  flags.DEFINE_string("db_path", None, "Path to the commerce SQLite DB")
except flags.DuplicateFlagError:
  pass


def _format_amount(amount: int, currency: str) -> str:
  return f"{amount / 100.0:.2f} {currency}"


async def dump_transactions():
  """Queries the database and prints all payment transactions."""
  if not FLAGS.db_path:
    print("Error: --db_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.db_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    result = await session.execute(
        select(Transaction).order_by(
            Transaction.order_id, Transaction.created_at
        )
    )
    transactions = result.scalars().all()

    if not transactions:
      print("No transactions found.")
      await engine.dispose()
      return

    for order_id, group in itertools.groupby(
        transactions, key=lambda t: t.order_id
    ):
      order = await session.get(Order, order_id)
      if order:
        print(
            f"Order: {order_id} [{order.payment_state}] total"
            f" {_format_amount(order.total, order.currency)}"
        )
      else:
        print(f"Order: {order_id} (deleted)")
      for transaction in group:
        line = (
            f"  - {transaction.type} {transaction.id}"
            f" {_format_amount(transaction.amount, transaction.currency)}"
            f" [{transaction.status}]"
        )
        if transaction.amount_reversed:
          line += (
              " reversed"
              f" {_format_amount(transaction.amount_reversed, transaction.currency)}"
          )
        if transaction.failure_code:
          line += (
              f" failed ({transaction.failure_code}):"
              f" {transaction.failure_description}"
          )
        print(line)
      print("-" * 60)

  await engine.dispose()


def main(argv):
  """Main entry point for the transaction dump script."""
  del argv
  asyncio.run(dump_transactions())


if __name__ == "__main__":
  absl_app.run(main)
