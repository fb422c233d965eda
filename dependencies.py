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

"""FastAPI dependencies for the commerce server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Access to the process-wide `CommerceServices` container.
- Database session management.
- Bearer token parsing into an explicit `RequestIdentity`.
- Page selection and the pagination headers of list endpoints.
- Service instantiation (OrderService, PaymentService, ReportService,
  DownloadService, UserService).
"""

from typing import Any, AsyncGenerator, Dict, Optional

from config import CommerceServices
import db
from exceptions import UnauthorizedError
from fastapi import Depends
from fastapi import Header
from fastapi import Query
from fastapi import Request
from fastapi import Response
from jose import JWTError
from jose import jwt
from models import Pagination
from models import RequestIdentity
from services.download_service import DownloadService
from services.order_service import OrderService
from services.payment_service import PaymentService
from services.report_service import ReportService
from services.user_service import UserService
from sqlalchemy.ext.asyncio import AsyncSession


def get_services(request: Request) -> CommerceServices:
  """Dependency provider for the services built during startup."""
  return request.app.state.services


async def get_db(
    services: CommerceServices = Depends(get_services),
) -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a DB session."""
  async with services.db_manager.session_factory() as session:
    yield session


def identity_from_claims(
    claims: Dict[str, Any], admin_role: str
) -> RequestIdentity:
  """Builds the caller's identity from verified token claims."""
  user_id = claims.get("sub") or claims.get("id")
  app_metadata = claims.get("app_metadata")
  roles = []
  if isinstance(app_metadata, dict):
    roles = app_metadata.get("roles") or []
  return RequestIdentity(
      user_id=str(user_id) if user_id else None,
      email=claims.get("email"),
      claims=claims,
      is_admin=admin_role in roles,
  )


async def get_identity(
    authorization: Optional[str] = Header(None),
    services: CommerceServices = Depends(get_services),
) -> RequestIdentity:
  """Parses the optional `Authorization: Bearer <jwt>` header."""
  if not authorization:
    return RequestIdentity()

  scheme, _, token = authorization.partition(" ")
  if scheme.lower() != "bearer" or not token:
    raise UnauthorizedError("Expected an Authorization: Bearer token")

  secret = services.config.jwt_secret
  if not secret:
    raise UnauthorizedError("Authentication is not configured")
  try:
    claims = jwt.decode(
        token.strip(),
        secret,
        algorithms=["HS256"],
        options={"verify_aud": False},
    )
  except JWTError as e:
    raise UnauthorizedError(f"Invalid token: {e}") from e
  return identity_from_claims(claims, services.config.admin_role)


def get_order_service(
    session: AsyncSession = Depends(get_db),
    services: CommerceServices = Depends(get_services),
) -> OrderService:
  """Dependency provider for OrderService."""
  return OrderService(session, services)


def get_payment_service(
    session: AsyncSession = Depends(get_db),
    services: CommerceServices = Depends(get_services),
) -> PaymentService:
  """Dependency provider for PaymentService."""
  return PaymentService(session, services)


def get_report_service(
    session: AsyncSession = Depends(get_db),
) -> ReportService:
  """Dependency provider for ReportService."""
  return ReportService(session)


def get_download_service(
    session: AsyncSession = Depends(get_db),
    services: CommerceServices = Depends(get_services),
) -> DownloadService:
  """Dependency provider for DownloadService."""
  return DownloadService(session, services)


def get_user_service(
    session: AsyncSession = Depends(get_db),
) -> UserService:
  """Dependency provider for UserService."""
  return UserService(session)


def get_pagination(
    page: int = Query(1, ge=1),
    per_page: int = Query(db.DEFAULT_PER_PAGE, ge=1, le=200),
) -> Pagination:
  """Parses the `page` and `per_page` query parameters."""
  return Pagination(page=page, per_page=per_page)


def add_pagination_headers(
    request: Request,
    response: Response,
    pagination: Pagination,
    total: int,
) -> None:
  """Sets the `Link` and `X-Total-Count` headers of a list response.

  `Link` points at the next page, when there is one, and at the last page.
  """
  per_page = pagination.per_page
  last_page = max(1, (total + per_page - 1) // per_page)
  links = []
  if pagination.page < last_page:
    next_url = request.url.include_query_params(page=pagination.page + 1)
    links.append(f'<{next_url}>; rel="next"')
  last_url = request.url.include_query_params(page=last_page)
  links.append(f'<{last_url}>; rel="last"')
  response.headers["Link"] = ", ".join(links)
  response.headers["X-Total-Count"] = str(total)
