import threading
import time
import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch

from quotes_backend.db import InMemoryDbClient, _InMemoryWriter
from quotes_backend.errors import NotFound, StoreError, ValidationError
from quotes_backend.quotes import (
    QuoteRepository,
    first_value,
    normalize_date,
    parse_quotes_value,
    project_quote,
    quote_uid_for,
)


class QuoteHelperTests(unittest.TestCase):
    def test_first_value_skips_none_and_blank_strings(self):
        self.assertEqual(first_value(None, "", "   ", "x", "y"), "x")
        self.assertEqual(first_value(None, 0, 5), 0)
        self.assertEqual(first_value(None, False), False)
        self.assertIsNone(first_value(None, " "))

    def test_normalize_date(self):
        self.assertEqual(normalize_date("2024-05-01"), "2024-05-01")
        self.assertEqual(normalize_date("2024-05-01T10:30:00Z"), "2024-05-01")
        self.assertEqual(normalize_date("2024-05-01T22:30:00-05:00"), "2024-05-02")
        self.assertEqual(normalize_date(date(2023, 1, 2)), "2023-01-02")
        self.assertEqual(
            normalize_date(datetime(2023, 1, 2, 23, tzinfo=timezone.utc)), "2023-01-02"
        )
        self.assertEqual(normalize_date(1714521600000), "2024-05-01")

    def test_normalize_date_drops_invalid_input(self):
        for value in (None, "", "not a date", "2024-13-45", True, {"d": 1}, []):
            with self.subTest(value=value):
                self.assertIsNone(normalize_date(value))

    def test_quote_uid_prefers_explicit_id(self):
        self.assertEqual(quote_uid_for({"id": "q1", "projectNumber": "PN"}, "u1"), "q1")
        self.assertEqual(quote_uid_for({"id": 7}, "u1"), "7")

    def test_quote_uid_synthesized_from_project_number(self):
        self.assertEqual(quote_uid_for({"projectNumber": "PN-200"}, "u1"), "PN-200-u1")
        self.assertEqual(
            quote_uid_for({"id": "", "project": {"projectNumber": "PN-9"}}, "u1"),
            "PN-9-u1",
        )
        self.assertEqual(
            quote_uid_for(
                {"projectNumber": "flat", "project": {"projectNumber": "nested"}}, "u1"
            ),
            "flat-u1",
        )

    def test_quote_uid_falls_back_to_one_slot_per_owner(self):
        self.assertEqual(quote_uid_for({}, "u1"), "quote-u1")
        self.assertEqual(quote_uid_for({"projectNumber": "  "}, "u1"), "quote-u1")

    def test_project_quote_applies_candidate_order_and_defaults(self):
        quote = {
            "clientName": "",
            "clientCategory": "flat-category",
            "totalRevenue": "12,500",
            "project": {
                "clientName": "Acme",
                "clientCategory": "Retail",
                "briefDate": "2024-02-30",
                "inMarketDate": "2024-06-01",
                "phases": [{"name": "Discovery"}],
                "phaseSettings": {"Discovery": {"weeks": 2}},
            },
        }
        projection = project_quote(quote, "u1")
        self.assertEqual(projection.quote_uid, "quote-u1")
        self.assertEqual(projection.client_name, "Acme")
        self.assertEqual(projection.client_category, "Retail")
        self.assertIsNone(projection.brief_date)
        self.assertEqual(projection.in_market_date, "2024-06-01")
        self.assertEqual(projection.total_program_budget, 12500.0)
        self.assertEqual(projection.currency, "CAD")
        self.assertEqual(projection.status, "draft")
        self.assertEqual(projection.phases, [{"name": "Discovery"}])
        self.assertEqual(projection.phase_settings, {"Discovery": {"weeks": 2}})
        self.assertEqual(projection.created_by, "u1")
        self.assertEqual(projection.updated_by, "u1")
        self.assertIs(projection.full_quote, quote)

    def test_project_quote_ignores_malformed_project_section(self):
        projection = project_quote({"project": "oops", "currency": "USD"}, "u1")
        self.assertEqual(projection.currency, "USD")
        self.assertEqual(projection.phases, [])
        self.assertEqual(projection.phase_settings, {})

    def test_parse_quotes_value(self):
        self.assertEqual(parse_quotes_value(None), [])
        self.assertEqual(parse_quotes_value([{"id": 1}]), [{"id": 1}])
        self.assertEqual(parse_quotes_value('[{"id": "a"}]'), [{"id": "a"}])
        self.assertEqual(parse_quotes_value('{"id": "a"}'), [])
        self.assertEqual(parse_quotes_value("not json"), [])
        self.assertEqual(parse_quotes_value(12), [])


class QuoteRepositoryTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.repo = QuoteRepository(self.db)

    def test_first_write_creates_row_with_defaults(self):
        self.repo.replace_quotes(
            "u1", [{"id": "q1", "projectNumber": "PN-100", "clientName": "Acme"}]
        )
        self.assertEqual(self.db.list_quote_ids("u1"), ["q1"])
        row = self.db.quotes["q1"]
        self.assertEqual(row.columns["project_number"], "PN-100")
        self.assertEqual(row.columns["currency"], "CAD")
        self.assertEqual(row.columns["status"], "draft")
        self.assertEqual(row.created_by, "u1")

    def test_second_write_replaces_previous_set(self):
        self.repo.replace_quotes("u1", [{"id": "q1", "projectNumber": "PN-100"}])
        self.repo.replace_quotes("u1", [{"projectNumber": "PN-200"}])
        self.assertEqual(self.db.list_quote_ids("u1"), ["PN-200-u1"])
        self.assertNotIn("q1", self.db.quotes)

    def test_owner_row_created_once_with_placeholder_email(self):
        self.repo.replace_quotes("u1", [])
        self.assertEqual(self.db.users["u1"], "u1@placeholder.local")
        self.repo.replace_quotes("u1", [], owner_email="later@ilovesalt.com")
        self.assertEqual(self.db.users["u1"], "u1@placeholder.local")

        self.repo.replace_quotes("u2", [], owner_email="pat@ilovesalt.com")
        self.assertEqual(self.db.users["u2"], "pat@ilovesalt.com")

    def test_replace_is_idempotent(self):
        quotes = [{"id": "a"}, {"projectNumber": "PN-1"}, {"clientName": "Solo"}]
        self.repo.replace_quotes("u1", quotes)
        first_ids = self.db.list_quote_ids("u1")
        created = {uid: row.created_at for uid, row in self.db.quotes.items()}

        self.repo.replace_quotes("u1", quotes)
        self.assertEqual(self.db.list_quote_ids("u1"), first_ids)
        self.assertEqual(len(self.db.quotes), 3)
        for uid, row in self.db.quotes.items():
            self.assertEqual(row.created_at, created[uid])

    def test_stored_ids_match_input_exactly(self):
        self.repo.replace_quotes("u1", [{"id": "x"}, {"id": "y"}, {"id": "z"}])
        quotes = [{"id": "y"}, {"projectNumber": "PN-5"}, {"project": {"projectNumber": "PN-6"}}]
        returned = self.repo.replace_quotes("u1", quotes)
        expected = ["PN-5-u1", "PN-6-u1", "y"]
        self.assertEqual(self.db.list_quote_ids("u1"), expected)
        self.assertEqual(sorted(returned), expected)

    def test_round_trip_returns_documents_verbatim(self):
        quotes = [
            {"id": "a", "project": {"phases": [1, 2]}, "extra": {"nested": [True, None]}},
            {"projectNumber": "PN-1", "status": "sent", "currency": "USD"},
        ]
        self.repo.replace_quotes("u1", quotes)
        loaded = self.repo.get_quotes_for_user("u1")
        self.assertEqual(len(loaded), 2)
        for quote in quotes:
            self.assertIn(quote, loaded)

    def test_documents_are_copied_on_write(self):
        quote = {"id": "a", "tags": ["x"]}
        self.repo.replace_quotes("u1", [quote])
        quote["tags"].append("mutated")
        self.assertEqual(self.repo.get_quote("u1", "a"), {"id": "a", "tags": ["x"]})

    def test_read_order_is_most_recently_updated_first(self):
        self.repo.replace_quotes("u1", [{"id": "old"}, {"id": "new"}])
        self.repo.upsert_quote("u1", "old", {"id": "old", "rev": 2})
        loaded = self.repo.get_quotes_for_user("u1")
        self.assertEqual([q["id"] for q in loaded], ["old", "new"])

    def test_empty_list_clears_owner_only(self):
        self.repo.replace_quotes("u1", [{"id": "a"}, {"id": "b"}])
        self.repo.replace_quotes("u2", [{"id": "c"}])
        self.repo.replace_quotes("u1", [])
        self.assertEqual(self.db.list_quote_ids("u1"), [])
        self.assertEqual(self.repo.get_quotes_for_user("u1"), [])
        self.assertEqual(self.db.list_quote_ids("u2"), ["c"])

    def test_documents_without_keys_collide(self):
        self.repo.replace_quotes("u1", [{"clientName": "First"}, {"clientName": "Second"}])
        self.assertEqual(self.db.list_quote_ids("u1"), ["quote-u1"])
        self.assertEqual(
            self.repo.get_quotes_for_user("u1"), [{"clientName": "Second"}]
        )

    def test_other_owner_update_keeps_creator(self):
        self.repo.replace_quotes("u1", [{"id": "shared", "v": 1}])
        self.repo.replace_quotes("u2", [{"id": "shared", "v": 2}])
        row = self.db.quotes["shared"]
        self.assertEqual(row.created_by, "u1")
        self.assertEqual(row.updated_by, "u2")
        self.assertEqual(self.repo.get_quotes_for_user("u1"), [{"id": "shared", "v": 2}])
        self.assertEqual(self.repo.get_quotes_for_user("u2"), [{"id": "shared", "v": 2}])

        # u2 did not create it, so u2's reconciliation never deletes it.
        self.repo.replace_quotes("u2", [])
        self.assertIn("shared", self.db.quotes)

    def test_non_object_entries_rejected_before_writing(self):
        self.repo.replace_quotes("u1", [{"id": "keep"}])
        with self.assertRaises(ValidationError) as ctx:
            self.repo.replace_quotes("u1", [{"id": "new"}, "oops"])
        self.assertEqual(ctx.exception.field, "quotes")
        self.assertEqual(self.db.list_quote_ids("u1"), ["keep"])

    def test_failed_batch_leaves_previous_state(self):
        self.repo.replace_quotes("u1", [{"id": "keep"}])
        with patch.object(
            _InMemoryWriter, "upsert_quote", side_effect=[None, StoreError("boom")]
        ):
            with self.assertRaises(StoreError):
                self.repo.replace_quotes("u1", [{"id": "a"}, {"id": "b"}])
        self.assertEqual(self.db.list_quote_ids("u1"), ["keep"])

    def test_concurrent_replacements_for_one_owner_do_not_interleave(self):
        original_upsert = _InMemoryWriter.upsert_quote

        def slow_upsert(writer, projection):
            time.sleep(0.001)
            original_upsert(writer, projection)

        id_sets = {
            f"t{n}": [f"t{n}-{i}" for i in range(5)] for n in range(4)
        }

        def worker(ids):
            for _ in range(10):
                self.repo.replace_quotes("u1", [{"id": quote_id} for quote_id in ids])

        with patch.object(_InMemoryWriter, "upsert_quote", slow_upsert):
            threads = [
                threading.Thread(target=worker, args=(ids,)) for ids in id_sets.values()
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        stored = self.db.list_quote_ids("u1")
        self.assertIn(stored, [sorted(ids) for ids in id_sets.values()])

    def test_single_quote_operations(self):
        saved = self.repo.upsert_quote("u1", "q9", {"clientName": "Acme"})
        self.assertEqual(saved, {"clientName": "Acme"})
        self.assertEqual(self.db.list_quote_ids("u1"), ["q9"])
        self.assertEqual(self.repo.get_quote("u1", "q9"), {"clientName": "Acme"})

        with self.assertRaises(NotFound):
            self.repo.get_quote("u2", "q9")
        with self.assertRaises(NotFound):
            self.repo.delete_quote("u2", "q9")

        self.repo.delete_quote("u1", "q9")
        with self.assertRaises(NotFound):
            self.repo.get_quote("u1", "q9")

    def test_upsert_quote_validates_input(self):
        with self.assertRaises(ValidationError):
            self.repo.upsert_quote("u1", "", {"a": 1})
        with self.assertRaises(ValidationError):
            self.repo.upsert_quote("u1", "q1", ["not", "an", "object"])


if __name__ == "__main__":
    unittest.main()
