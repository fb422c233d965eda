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

"""Commerce Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence

from absl import app as absl_app
import config
from exceptions import CommerceError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.coupons import router as coupons_router
from routes.downloads import router as downloads_router
from routes.orders import router as orders_router
from routes.payments import router as payments_router
from routes.reports import router as reports_router
from routes.settings import router as settings_router
from routes.users import router as users_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Commerce Service",
    version="1.0.0",
    description="Order and payment API for a static storefront",
    lifespan=config.lifespan,
)


@app.exception_handler(CommerceError)
async def commerce_exception_handler(request: Request, exc: CommerceError):
  """Handles commerce exceptions and converts them to JSON responses."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"detail": exc.message, "code": exc.code},
  )


app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(coupons_router)
app.include_router(reports_router)
app.include_router(settings_router)
app.include_router(downloads_router)
app.include_router(users_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Commerce Server."""
  del argv  # Unused.

  if (
      config.FLAGS.db_path is None
      or config.FLAGS.site_url is None
      or config.FLAGS.port is None
  ):
    logger.error("--db_path, --site_url and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
