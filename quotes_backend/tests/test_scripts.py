import unittest
from unittest.mock import patch

from quotes_backend.directory import DirectoryService
from quotes_backend.errors import ProviderError
from quotes_backend.identity import InMemoryIdentityProvider
from scripts import promote_all, set_role


class PromoteAllTests(unittest.TestCase):
    def setUp(self):
        self.provider = InMemoryIdentityProvider()
        self.provider.add_user("a", email="a@ilovesalt.com", role="admin")
        self.provider.add_user("b", email="b@ilovesalt.com", role="pm")
        self.provider.add_user("c", email="c@ilovesalt.com")
        self.directory = DirectoryService(self.provider)

    def test_dry_run_changes_nothing(self):
        promoted, failed = promote_all.promote_all(self.directory, dry_run=True)
        self.assertEqual((promoted, failed), (2, 0))
        self.assertEqual(self.provider.users["c"].claims, {})

    def test_promotes_non_admins(self):
        promoted, failed = promote_all.promote_all(self.directory)
        self.assertEqual((promoted, failed), (2, 0))
        for uid in ("a", "b", "c"):
            self.assertEqual(self.provider.users[uid].claims["role"], "admin")

    def test_counts_failures(self):
        class Flaky(InMemoryIdentityProvider):
            def set_role_claim(self, subject_id, claims):
                if subject_id == "b":
                    raise ProviderError("nope")
                super().set_role_claim(subject_id, claims)

        provider = Flaky()
        provider.add_user("b", role="user")
        provider.add_user("c")
        promoted, failed = promote_all.promote_all(DirectoryService(provider))
        self.assertEqual((promoted, failed), (1, 1))


class SetRoleScriptTests(unittest.TestCase):
    def test_main_merges_role(self):
        provider = InMemoryIdentityProvider()
        record = provider.add_user("u1", role="user")
        record.claims["team"] = "studio"
        with patch.object(set_role, "get_identity_provider", return_value=provider):
            self.assertEqual(set_role.main(["--uid", "u1", "--role", "pm"]), 0)
        self.assertEqual(provider.users["u1"].claims, {"role": "pm", "team": "studio"})

    def test_main_reports_missing_user(self):
        provider = InMemoryIdentityProvider()
        with patch.object(set_role, "get_identity_provider", return_value=provider):
            self.assertEqual(set_role.main(["--uid", "ghost", "--role", "pm"]), 1)


if __name__ == "__main__":
    unittest.main()
