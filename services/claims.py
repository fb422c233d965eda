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

"""Claim-path matching against nested JWT claims."""

from typing import Any, Mapping, Optional, Union

# A claims tree is a string-keyed map whose values are string leaves or nodes.
ClaimsTree = Mapping[str, Union[str, "ClaimsTree", Any]]


def lookup_claim(claims: Optional[ClaimsTree], path: str) -> Optional[str]:
  """Resolves a dot-separated path to a string leaf.

  Args:
    claims: The nested claims map.
    path: Key sequence such as `app_metadata.subscription.plan`.

  Returns:
    The leaf value, or None when a key is missing, an intermediate value is
    not a map or the leaf is not a string.
  """
  node: Any = claims
  for key in path.split("."):
    if not isinstance(node, Mapping):
      return None
    if key not in node:
      return None
    node = node[key]
  if isinstance(node, str):
    return node
  return None


def has_claims(
    user_claims: Optional[ClaimsTree],
    required_claims: Optional[Mapping[str, str]],
) -> bool:
  """Checks that every required claim path resolves to the expected value."""
  if not required_claims:
    return True
  if user_claims is None:
    return False
  for path, expected in required_claims.items():
    if lookup_claim(user_claims, path) != expected:
      return False
  return True
