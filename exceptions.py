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

"""Custom exceptions for the Commerce Server."""


class CommerceError(Exception):
  """Base class for all commerce exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class InvalidRequestError(CommerceError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class UnauthorizedError(CommerceError):
  """Raised when the caller's identity is missing or does not match."""

  def __init__(self, message: str):
    super().__init__(message, code="UNAUTHORIZED", status_code=401)


class ResourceNotFoundError(CommerceError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class CouponNotFoundError(ResourceNotFoundError):
  """Raised when a coupon code is not part of the coupon feed."""


class OrderAlreadyPaidError(CommerceError):
  """Raised when a payment targets an order that has already been paid."""

  def __init__(self, message: str = "This order has already been paid"):
    super().__init__(message, code="ORDER_ALREADY_PAID", status_code=409)


class VerificationError(CommerceError):
  """Raised when a price could not be confirmed against the storefront."""

  def __init__(self, message: str):
    super().__init__(message, code="VERIFICATION_FAILED", status_code=500)


class PaymentFailedError(CommerceError):
  """Raised when the payment gateway rejects a charge or refund."""

  def __init__(
      self, message: str, code: str = "PAYMENT_FAILED", status_code: int = 500
  ):
    super().__init__(message, code=code, status_code=status_code)


class UpstreamError(CommerceError):
  """Raised when a storefront or coupon feed request fails."""

  def __init__(self, message: str):
    super().__init__(message, code="UPSTREAM_ERROR", status_code=500)


class PreauthorizationUnsupportedError(CommerceError):
  """Raised when the configured provider cannot preauthorize payments."""

  def __init__(self, provider: str):
    super().__init__(
        f"Payment provider {provider} does not support preauthorization",
        code="PREAUTHORIZATION_UNSUPPORTED",
        status_code=400,
    )


class AssetStoreError(CommerceError):
  """Raised when a download URL could not be signed."""

  def __init__(self, message: str):
    super().__init__(message, code="DOWNLOAD_SIGNING_FAILED", status_code=500)


class PaymentProviderError(Exception):
  """Raised by payment providers when the gateway call fails."""
