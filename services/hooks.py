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

"""Webhook creation and at-least-once delivery.

Hooks are rows in the `hooks` table written in the same transaction as the
event they describe. The `HookDispatcher` polls the table, leases every due
hook to its worker id, and delivers the leased hooks concurrently.

A delivery POSTs the JSON payload captured when the hook was created. When
the hook has a secret, the request carries an `X-Signature` header with a
short-lived HS256 JWT whose subject is the hook's user id. A 2xx response
completes the hook. Any other outcome schedules a retry `tries * 30s` later
until the hook has been tried `MAX_RETRIES` times, after which it is marked
failed. Leases older than `LEASE_TIMEOUT` are taken over by the next sweep.
"""

import asyncio
import datetime
import json
import logging
from typing import Any, Callable, Optional
import uuid

import db
from enums import HookType
import httpx
from jose import jwt
from pydantic import BaseModel
from services.coupons import resolve_url
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

MAX_CONCURRENT_HOOKS = 5
MAX_RETRIES = 5
RETRY_PERIOD = datetime.timedelta(seconds=30)
SIGNATURE_EXPIRATION = datetime.timedelta(minutes=5)
LEASE_TIMEOUT = datetime.timedelta(minutes=5)
POLL_INTERVAL_SECONDS = 5.0


def new_hook(
    hook_type: HookType,
    site_url: str,
    url: str,
    user_id: Optional[str],
    secret: Optional[str],
    payload: Any,
) -> db.Hook:
  """Creates a hook row holding a JSON snapshot of the payload."""
  if isinstance(payload, BaseModel):
    body = payload.model_dump_json()
  else:
    body = json.dumps(payload, default=str)
  return db.Hook(
      type=hook_type.value,
      user_id=user_id,
      url=resolve_url(site_url, url),
      secret=secret or None,
      payload=body,
      done=False,
      failed=False,
      tries=0,
  )


def sign_hook(
    user_id: Optional[str], secret: str, now: datetime.datetime
) -> str:
  """Returns the value of the X-Signature header."""
  expires = (now + SIGNATURE_EXPIRATION).replace(tzinfo=datetime.timezone.utc)
  claims = {"sub": user_id or "", "exp": int(expires.timestamp())}
  return jwt.encode(claims, secret, algorithm="HS256")


class HookDispatcher:
  """Background worker that delivers pending hooks."""

  def __init__(
      self,
      session_factory: sessionmaker,
      http_client: httpx.AsyncClient,
      worker_id: Optional[str] = None,
      clock: Callable[[], datetime.datetime] = db.utcnow,
      poll_interval: float = POLL_INTERVAL_SECONDS,
  ):
    self.session_factory = session_factory
    self.http_client = http_client
    self.worker_id = worker_id or str(uuid.uuid4())
    self.clock = clock
    self.poll_interval = poll_interval
    self._stopping: Optional[asyncio.Event] = None
    self._task: Optional[asyncio.Task] = None

  async def run_once(self) -> int:
    """Leases due hooks and delivers them.

    Returns:
      The number of hooks that were attempted.
    """
    async with self.session_factory() as session:
      hooks = await db.lease_hooks(
          session, self.worker_id, self.clock(), LEASE_TIMEOUT
      )
      await session.commit()

    if not hooks:
      return 0

    logger.info("Worker %s leased %d hooks", self.worker_id, len(hooks))
    semaphore = asyncio.Semaphore(MAX_CONCURRENT_HOOKS)

    async def deliver(hook: db.Hook) -> None:
      async with semaphore:
        await self._trigger(hook)
        async with self.session_factory() as session:
          await session.merge(hook)
          await session.commit()

    await asyncio.gather(*(deliver(hook) for hook in hooks))
    return len(hooks)

  async def _trigger(self, hook: db.Hook) -> None:
    """Sends one delivery attempt and records its outcome on the hook."""
    hook.tries = (hook.tries or 0) + 1
    headers = {"Content-Type": "application/json"}
    if hook.secret:
      headers["X-Signature"] = sign_hook(hook.user_id, hook.secret, self.clock())

    try:
      response = await self.http_client.post(
          hook.url, content=hook.payload, headers=headers
      )
    except httpx.HTTPError as e:
      self._record_failure(hook, f"Failed to deliver hook: {e}")
    else:
      hook.response_status = response.status_code
      hook.response_headers = json.dumps(dict(response.headers))
      hook.response_body = response.text
      if response.is_success:
        hook.done = True
        hook.error_message = None
        hook.completed_at = self.clock()
      else:
        self._record_failure(
            hook, f"Hook returned status {response.status_code}"
        )

    hook.locked_at = None
    hook.locked_by = None

  def _record_failure(self, hook: db.Hook, message: str) -> None:
    logger.warning(
        "Hook %s to %s failed (try %d): %s",
        hook.id,
        hook.url,
        hook.tries,
        message,
    )
    hook.error_message = message
    now = self.clock()
    if hook.tries >= MAX_RETRIES:
      hook.done = True
      hook.failed = True
      hook.completed_at = now
    else:
      hook.run_after = now + RETRY_PERIOD * hook.tries

  def start(self) -> None:
    """Starts polling in a background task."""
    if self._task is not None:
      return
    self._stopping = asyncio.Event()
    self._task = asyncio.create_task(self._run())

  async def stop(self) -> None:
    """Stops polling and waits for the current sweep to finish."""
    if self._task is None:
      return
    self._stopping.set()
    await self._task
    self._task = None

  async def _run(self) -> None:
    while not self._stopping.is_set():
      try:
        await self.run_once()
      except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Hook dispatch sweep failed")
      try:
        await asyncio.wait_for(
            self._stopping.wait(), timeout=self.poll_interval
        )
      except asyncio.TimeoutError:
        pass
