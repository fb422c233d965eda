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

"""Reporting routes for admins."""

from typing import List, Optional

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from models import ProductsRow
from models import RequestIdentity
from models import SalesRow
from services.report_service import ReportService

router = APIRouter()


@router.get(
    "/reports/sales",
    response_model=List[SalesRow],
    operation_id="sales_report",
)
async def sales_report(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    report_service: ReportService = Depends(dependencies.get_report_service),
) -> List[SalesRow]:
  """Sales per currency over paid orders."""
  return await report_service.sales(identity, start, end)


@router.get(
    "/reports/products",
    response_model=List[ProductsRow],
    operation_id="products_report",
)
async def products_report(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    report_service: ReportService = Depends(dependencies.get_report_service),
) -> List[ProductsRow]:
  """Products sold over paid orders, best sellers first."""
  return await report_service.products(identity, start, end)
