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

"""Download routes for files of paid orders."""

from typing import List

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Request
from fastapi import Response
from models import DownloadResponse
from models import DownloadURLResponse
from models import Pagination
from models import RequestIdentity
from services.download_service import DownloadService

router = APIRouter()


@router.get(
    "/downloads",
    response_model=List[DownloadResponse],
    operation_id="list_downloads",
)
async def list_downloads(
    request: Request,
    response: Response,
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    download_service: DownloadService = Depends(
        dependencies.get_download_service
    ),
) -> List[DownloadResponse]:
  """List the downloads of the caller's paid orders."""
  page = await download_service.list_for_user(identity, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return [DownloadResponse.model_validate(d) for d in page.items]


@router.get(
    "/orders/{order_id}/downloads",
    response_model=List[DownloadResponse],
    operation_id="list_order_downloads",
)
async def list_order_downloads(
    request: Request,
    response: Response,
    order_id: str = Path(...),
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    download_service: DownloadService = Depends(
        dependencies.get_download_service
    ),
) -> List[DownloadResponse]:
  """List the downloads of a paid order."""
  page = await download_service.list_for_order(order_id, identity, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return [DownloadResponse.model_validate(d) for d in page.items]


@router.get(
    "/downloads/{download_id}",
    response_model=DownloadURLResponse,
    operation_id="get_download_url",
)
async def get_download_url(
    request: Request,
    download_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    download_service: DownloadService = Depends(
        dependencies.get_download_service
    ),
) -> DownloadURLResponse:
  """Get a signed URL for a download."""
  ip = request.client.host if request.client else ""
  download, url = await download_service.download_url(
      download_id, identity, ip
  )
  return DownloadURLResponse(
      **DownloadResponse.model_validate(download).model_dump(), url=url
  )
