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

from absl.testing import absltest
from services.claims import has_claims
from services.claims import lookup_claim

CLAIMS = {
    "email": "ada@example.com",
    "app_metadata": {
        "roles": ["admin"],
        "subscription": {"plan": "member", "seats": 3},
    },
}


class ClaimsTest(absltest.TestCase):

  def test_lookup_nested_leaf(self):
    self.assertEqual(
        lookup_claim(CLAIMS, "app_metadata.subscription.plan"), "member"
    )
    self.assertEqual(lookup_claim(CLAIMS, "email"), "ada@example.com")

  def test_lookup_missing_or_non_string(self):
    self.assertIsNone(lookup_claim(CLAIMS, "app_metadata.missing"))
    self.assertIsNone(lookup_claim(CLAIMS, "email.domain"))
    self.assertIsNone(lookup_claim(CLAIMS, "app_metadata.subscription"))
    self.assertIsNone(lookup_claim(CLAIMS, "app_metadata.subscription.seats"))
    self.assertIsNone(lookup_claim(None, "email"))

  def test_empty_requirements_always_match(self):
    self.assertTrue(has_claims(None, {}))
    self.assertTrue(has_claims(CLAIMS, None))

  def test_requirements_need_claims(self):
    self.assertFalse(has_claims(None, {"email": "ada@example.com"}))

  def test_all_requirements_must_match(self):
    self.assertTrue(
        has_claims(
            CLAIMS,
            {
                "email": "ada@example.com",
                "app_metadata.subscription.plan": "member",
            },
        )
    )
    self.assertFalse(
        has_claims(
            CLAIMS,
            {
                "email": "ada@example.com",
                "app_metadata.subscription.plan": "pro",
            },
        )
    )


if __name__ == "__main__":
  absltest.main()
