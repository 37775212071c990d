import json
import os
import tempfile
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.errors import StorageError
from core.models import MatchedResult
from core.storage.database_storage import DatabaseStorage
from core.storage.factory import create_storage
from core.storage.file_storage import JsonFileStorage
from core.storage.supabase_storage import SupabaseStorage

NOW = datetime(2024, 5, 1, 12, 0, 0)


def _results():
    return [
        MatchedResult(
            product_name="Jupiler Pils bak 24x25cl",
            store="Colruyt",
            price_text="€16,29",
            target_product="Jupiler bak 24x25cl",
            link="https://www.colruyt.be/nl/producten/1",
            price_value=16.29,
            promo_tag="2+1 gratis",
            timestamp=NOW,
        ),
        MatchedResult(
            product_name="Maes bak 24x25cl",
            store="Babylon Drinks",
            price_text="Prijs onbekend",
            target_product="Maes bak 24x25cl",
            link="https://babylondrinks.be/product/maes/",
            timestamp=NOW,
        ),
    ]


class TestJsonFileStorage(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "data", "latest-results.json")
        self.storage = JsonFileStorage(self.path)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_save_and_load_latest_run(self) -> None:
        session_id = self.storage.save_results(_results())

        loaded = self.storage.load_latest()

        self.assertEqual(loaded, _results())
        with open(self.path, encoding="utf-8") as f:
            document = json.load(f)
        self.assertEqual(document["scraping_session_id"], session_id)
        self.assertEqual(document["results"][0]["supermarket"], "Colruyt")
        self.assertIsNotNone(self.storage.last_update_time())

    def test_update_time_is_naive_utc(self) -> None:
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        self.storage.save_results(_results())

        last_update = self.storage.last_update_time()

        self.assertIsNone(last_update.tzinfo)
        self.assertGreaterEqual(last_update, before)

    def test_missing_file_starts_fresh(self) -> None:
        self.assertEqual(self.storage.load_latest(), [])
        self.assertIsNone(self.storage.last_update_time())

    def test_corrupt_file_raises_storage_error(self) -> None:
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")

        with self.assertRaises(StorageError):
            self.storage.load_latest()


class TestDatabaseStorage(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        self.storage = DatabaseStorage(session_factory=sessionmaker(bind=self.engine), bind=self.engine)
        self.storage.init_schema()

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_latest_run_is_restored(self) -> None:
        self.storage.save_results(_results()[:1])
        latest_id = self.storage.save_results(_results(), session_id="run-2")

        loaded = self.storage.load_latest()

        self.assertEqual(latest_id, "run-2")
        self.assertEqual(sorted(r.product_name for r in loaded),
                         ["Jupiler Pils bak 24x25cl", "Maes bak 24x25cl"])
        maes = next(r for r in loaded if r.store == "Babylon Drinks")
        self.assertIsNone(maes.price_value)
        self.assertEqual(maes.price_text, "Prijs onbekend")
        self.assertIsNotNone(self.storage.last_update_time())

    def test_empty_database_starts_fresh(self) -> None:
        self.assertEqual(self.storage.load_latest(), [])
        self.assertIsNone(self.storage.last_update_time())


def _response(payload=None):
    response = MagicMock()
    response.content = b"" if payload is None else json.dumps(payload).encode()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestSupabaseStorage(unittest.TestCase):
    def setUp(self) -> None:
        self.http = MagicMock()
        self.http.headers = {}
        self.storage = SupabaseStorage("https://abc.supabase.co/", "service-key", session=self.http)

    def test_service_key_headers(self) -> None:
        self.assertEqual(self.http.headers["apikey"], "service-key")
        self.assertEqual(self.http.headers["Authorization"], "Bearer service-key")

    def test_save_posts_one_batch(self) -> None:
        self.http.request.return_value = _response()

        session_id = self.storage.save_results(_results(), session_id="run-1")

        self.assertEqual(session_id, "run-1")
        args, kwargs = self.http.request.call_args
        self.assertEqual(args, ("POST", "https://abc.supabase.co/rest/v1/scraped_products"))
        self.assertEqual(len(kwargs["json"]), 2)
        self.assertEqual(kwargs["json"][0]["scraping_session_id"], "run-1")
        self.assertEqual(kwargs["headers"], {"Prefer": "return=minimal"})

    def test_load_latest_filters_on_newest_session(self) -> None:
        rows = [result.to_record("run-9") for result in _results()]
        self.http.request.side_effect = [
            _response([{"scraping_session_id": "run-9", "timestamp": "2024-05-01T12:00:00+00:00"}]),
            _response(rows),
        ]

        loaded = self.storage.load_latest()

        self.assertEqual([r.product_name for r in loaded], [r.product_name for r in _results()])
        second_call = self.http.request.call_args_list[1]
        self.assertEqual(second_call.kwargs["params"]["scraping_session_id"], "eq.run-9")

    def test_network_failure_becomes_storage_error(self) -> None:
        self.http.request.side_effect = requests.exceptions.ConnectionError("down")

        with self.assertRaises(StorageError):
            self.storage.save_results(_results())


class TestStorageFactory(unittest.TestCase):
    def _settings(self, **overrides):
        values = dict(
            STORAGE_BACKEND="file",
            RESULTS_FILE="data/latest-results.json",
            SUPABASE_URL="",
            SUPABASE_SERVICE_ROLE_KEY="",
        )
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_file_backend(self) -> None:
        self.assertIsInstance(create_storage(self._settings()), JsonFileStorage)

    def test_supabase_without_credentials_is_unavailable(self) -> None:
        self.assertIsNone(create_storage(self._settings(STORAGE_BACKEND="supabase")))

    def test_supabase_with_credentials(self) -> None:
        storage = create_storage(self._settings(
            STORAGE_BACKEND="supabase", SUPABASE_URL="https://abc.supabase.co", SUPABASE_SERVICE_ROLE_KEY="k"
        ))

        self.assertIsInstance(storage, SupabaseStorage)

    def test_unknown_backend_raises(self) -> None:
        with self.assertRaises(ValueError):
            create_storage(self._settings(STORAGE_BACKEND="redis"))


if __name__ == "__main__":
    unittest.main()
