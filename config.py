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

"""Shared configuration and startup logic for the commerce server."""

import contextlib
import logging
from typing import Optional

from absl import flags
import db
from fastapi import FastAPI
import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from services.asset_stores import AssetStore
from services.asset_stores import NETLIFY_STORE
from services.asset_stores import NetlifyAssetStore
from services.asset_stores import NOOP_STORE
from services.asset_stores import NoopAssetStore
from services.coupons import CouponCache
from services.coupons import new_coupon_cache
from services.hooks import HookDispatcher
from services.payments import PAYPAL_PROVIDER
from services.payments import PaymentProvider
from services.payments import STRIPE_PROVIDER
from services.paypal_provider import PayPalPaymentProvider
from services.stripe_provider import StripePaymentProvider

FLAGS = flags.FLAGS

logger = logging.getLogger(__name__)

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("db_path", None, "Path to the commerce SQLite DB")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string("site_url", None, "Base URL of the storefront")
  flags.DEFINE_string(
      "settings_path",
      "/commerce/settings.json",
      "Path of the pricing settings document on the storefront",
  )
  flags.DEFINE_string("coupons_url", None, "URL of the coupon feed")
  flags.DEFINE_string("coupons_user", None, "Basic auth user for the feed")
  flags.DEFINE_string(
      "coupons_password", None, "Basic auth password for the feed"
  )
  flags.DEFINE_enum(
      "payment_provider",
      STRIPE_PROVIDER,
      [STRIPE_PROVIDER, PAYPAL_PROVIDER],
      "Payment provider used to charge orders",
  )
  flags.DEFINE_string("stripe_secret_key", None, "Stripe secret API key")
  flags.DEFINE_string("paypal_client_id", None, "PayPal REST client id")
  flags.DEFINE_string("paypal_secret", None, "PayPal REST secret")
  flags.DEFINE_string(
      "paypal_env", "sandbox", "PayPal environment or API base URL"
  )
  flags.DEFINE_string(
      "jwt_secret", None, "Secret used to verify bearer tokens"
  )
  flags.DEFINE_string("admin_role", "admin", "Role granting admin access")
  flags.DEFINE_string("order_webhook_url", None, "Webhook for new orders")
  flags.DEFINE_string("payment_webhook_url", None, "Webhook for payments")
  flags.DEFINE_string("refund_webhook_url", None, "Webhook for refunds")
  flags.DEFINE_string("webhook_secret", None, "Secret used to sign webhooks")
  flags.DEFINE_float(
      "http_timeout", 15.0, "Timeout in seconds for outgoing HTTP requests"
  )
  flags.DEFINE_enum(
      "downloads_provider",
      NOOP_STORE,
      [NOOP_STORE, NETLIFY_STORE],
      "Asset store that signs download URLs",
  )
  flags.DEFINE_string(
      "downloads_netlify_token", None, "Netlify API token for downloads"
  )
except flags.DuplicateFlagError:
  pass


class Configuration(BaseModel):
  """Immutable server configuration."""

  model_config = ConfigDict(frozen=True)

  db_path: Optional[str] = None
  site_url: str = ""
  settings_path: str = "/commerce/settings.json"
  coupons_url: Optional[str] = None
  coupons_user: Optional[str] = None
  coupons_password: Optional[str] = None
  payment_provider: str = STRIPE_PROVIDER
  stripe_secret_key: Optional[str] = None
  paypal_client_id: Optional[str] = None
  paypal_secret: Optional[str] = None
  paypal_env: str = "sandbox"
  jwt_secret: Optional[str] = None
  admin_role: str = "admin"
  order_webhook_url: Optional[str] = None
  payment_webhook_url: Optional[str] = None
  refund_webhook_url: Optional[str] = None
  webhook_secret: Optional[str] = None
  http_timeout: float = 15.0
  downloads_provider: str = NOOP_STORE
  downloads_netlify_token: Optional[str] = None

  @classmethod
  def from_flags(cls) -> "Configuration":
    return cls(
        db_path=FLAGS.db_path,
        site_url=FLAGS.site_url or "",
        settings_path=FLAGS.settings_path,
        coupons_url=FLAGS.coupons_url,
        coupons_user=FLAGS.coupons_user,
        coupons_password=FLAGS.coupons_password,
        payment_provider=FLAGS.payment_provider,
        stripe_secret_key=FLAGS.stripe_secret_key,
        paypal_client_id=FLAGS.paypal_client_id,
        paypal_secret=FLAGS.paypal_secret,
        paypal_env=FLAGS.paypal_env,
        jwt_secret=FLAGS.jwt_secret,
        admin_role=FLAGS.admin_role,
        order_webhook_url=FLAGS.order_webhook_url,
        payment_webhook_url=FLAGS.payment_webhook_url,
        refund_webhook_url=FLAGS.refund_webhook_url,
        webhook_secret=FLAGS.webhook_secret,
        http_timeout=FLAGS.http_timeout,
        downloads_provider=FLAGS.downloads_provider,
        downloads_netlify_token=FLAGS.downloads_netlify_token,
    )

  @property
  def settings_url(self) -> str:
    return self.site_url.rstrip("/") + "/" + self.settings_path.lstrip("/")


def create_payment_provider(
    config: Configuration, http_client: httpx.AsyncClient
) -> PaymentProvider:
  """Creates the configured payment provider."""
  if config.payment_provider == STRIPE_PROVIDER:
    return StripePaymentProvider(
        config.stripe_secret_key, timeout=config.http_timeout
    )
  if config.payment_provider == PAYPAL_PROVIDER:
    return PayPalPaymentProvider(
        config.paypal_client_id,
        config.paypal_secret,
        config.paypal_env,
        http_client,
    )
  raise ValueError(f"Unknown payment provider {config.payment_provider}")


def create_asset_store(
    config: Configuration, http_client: httpx.AsyncClient
) -> AssetStore:
  """Creates the asset store that signs download URLs."""
  if config.downloads_provider == NOOP_STORE:
    return NoopAssetStore()
  if config.downloads_provider == NETLIFY_STORE:
    return NetlifyAssetStore(config.downloads_netlify_token, http_client)
  raise ValueError(f"Unknown asset store {config.downloads_provider}")


class CommerceServices:
  """Process-wide collaborators shared by all requests."""

  def __init__(
      self,
      config: Configuration,
      db_manager: db.DatabaseManager,
      http_client: httpx.AsyncClient,
      payment_provider: PaymentProvider,
      coupon_cache: Optional[CouponCache] = None,
      hook_dispatcher: Optional[HookDispatcher] = None,
      asset_store: Optional[AssetStore] = None,
  ):
    self.config = config
    self.db_manager = db_manager
    self.http_client = http_client
    self.payment_provider = payment_provider
    self.coupon_cache = coupon_cache
    self.hook_dispatcher = hook_dispatcher
    self.asset_store = asset_store or NoopAssetStore()

  @classmethod
  async def create(cls, config: Configuration) -> "CommerceServices":
    """Opens the database and builds the shared clients."""
    db_manager = db.DatabaseManager()
    await db_manager.init_db(config.db_path)
    http_client = httpx.AsyncClient(timeout=config.http_timeout)
    return cls(
        config,
        db_manager,
        http_client,
        create_payment_provider(config, http_client),
        coupon_cache=new_coupon_cache(
            config.coupons_url,
            config.site_url,
            http_client,
            user=config.coupons_user,
            password=config.coupons_password,
        ),
        hook_dispatcher=HookDispatcher(
            db_manager.session_factory, http_client
        ),
        asset_store=create_asset_store(config, http_client),
    )

  async def close(self) -> None:
    if self.hook_dispatcher:
      await self.hook_dispatcher.stop()
    await self.http_client.aclose()
    await self.db_manager.close()


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for building and closing the services."""
  # In tests or if flags aren't set, the services are provided by the caller
  if not FLAGS.is_parsed() or not FLAGS.db_path:
    yield
    return

  services = await CommerceServices.create(Configuration.from_flags())
  app.state.services = services
  services.hook_dispatcher.start()
  logger.info(
      "Commerce services started with %s payments", services.payment_provider.name
  )
  try:
    yield
  finally:
    await services.close()
