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

"""Payment, refund and preauthorization routes."""

from typing import List

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from fastapi import Request
from fastapi import Response
from models import Pagination
from models import PaymentParams
from models import PreauthorizeParams
from models import RequestIdentity
from models import TransactionResponse
from services.payment_service import PaymentService
from services.payments import PreauthorizationResult

router = APIRouter()


@router.post(
    "/orders/{order_id}/payments",
    response_model=TransactionResponse,
    operation_id="create_payment",
)
async def create_payment(
    order_id: str = Path(...),
    params: PaymentParams = Body(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> TransactionResponse:
  """Charge an order."""
  transaction = await payment_service.create_payment(
      order_id, params, params.model_dump(), identity
  )
  return TransactionResponse.model_validate(transaction)


@router.get(
    "/orders/{order_id}/payments",
    response_model=List[TransactionResponse],
    operation_id="list_order_payments",
)
async def list_order_payments(
    request: Request,
    response: Response,
    order_id: str = Path(...),
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> List[TransactionResponse]:
  """List the transactions of an order."""
  page = await payment_service.list_for_order(order_id, identity, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return [TransactionResponse.model_validate(t) for t in page.items]


@router.get(
    "/users/{user_id}/payments",
    response_model=List[TransactionResponse],
    operation_id="list_user_payments",
)
async def list_user_payments(
    request: Request,
    response: Response,
    user_id: str = Path(...),
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> List[TransactionResponse]:
  """List the transactions of a user."""
  page = await payment_service.list_for_user(user_id, identity, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return [TransactionResponse.model_validate(t) for t in page.items]


@router.get(
    "/payments",
    response_model=List[TransactionResponse],
    operation_id="list_payments",
)
async def list_payments(
    request: Request,
    response: Response,
    pagination: Pagination = Depends(dependencies.get_pagination),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> List[TransactionResponse]:
  """List all transactions."""
  page = await payment_service.list_all(identity, pagination)
  dependencies.add_pagination_headers(
      request, response, pagination, page.total
  )
  return [TransactionResponse.model_validate(t) for t in page.items]


@router.get(
    "/payments/{pay_id}",
    response_model=TransactionResponse,
    operation_id="get_payment",
)
async def get_payment(
    pay_id: str = Path(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> TransactionResponse:
  """Get a transaction by ID."""
  transaction = await payment_service.get_transaction(pay_id, identity)
  return TransactionResponse.model_validate(transaction)


@router.post(
    "/payments/{pay_id}/refund",
    response_model=TransactionResponse,
    operation_id="refund_payment",
)
async def refund_payment(
    pay_id: str = Path(...),
    params: PaymentParams = Body(...),
    identity: RequestIdentity = Depends(dependencies.get_identity),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> TransactionResponse:
  """Refund part or all of a transaction."""
  refund = await payment_service.refund(
      pay_id, params, params.model_dump(), identity
  )
  return TransactionResponse.model_validate(refund)


@router.post(
    "/preauthorize",
    response_model=PreauthorizationResult,
    operation_id="preauthorize_payment",
)
async def preauthorize_payment(
    params: PreauthorizeParams = Body(...),
    payment_service: PaymentService = Depends(
        dependencies.get_payment_service
    ),
) -> PreauthorizationResult:
  """Create a payment the buyer approves in the browser."""
  return await payment_service.preauthorize(params, params.model_dump())
