# tests/test_cli_runner.py

"""Tests for the headless CLI runner and argument handling."""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from main import _build_parser, _settings_from_args
from src.cli.runner import (
    EXIT_CRASH,
    EXIT_OK,
    EXIT_SESSION_INVALID,
    cli_refresh,
    exit_code_for,
    run_import_offers,
)
from src.config.settings import Settings
from src.models.job_run import RunSummary
from src.storage.catalog_db import CatalogDB
from src.storage.session_store import ENV_API_TOKEN, ENV_COOKIE


class TestExitCodes(unittest.TestCase):

    def test_mapping(self) -> None:
        self.assertEqual(exit_code_for(RunSummary("success", {}, 0)), EXIT_OK)
        self.assertEqual(exit_code_for(RunSummary("partial", {}, 0)), EXIT_OK)
        self.assertEqual(
            exit_code_for(RunSummary("session_invalid", {}, 0)),
            EXIT_SESSION_INVALID,
        )
        self.assertEqual(exit_code_for(RunSummary("failed", {}, 0)), EXIT_CRASH)


class TestArgs(unittest.TestCase):

    def test_overrides_apply_per_instance(self) -> None:
        args = _build_parser().parse_args([
            "--concurrency", "3", "--batch-size", "50",
            "--gate-threshold", "4", "--platform", "ml",
        ])
        settings = _settings_from_args(args)
        self.assertEqual(settings.CONCURRENCY, 3)
        self.assertEqual(settings.BATCH_SIZE, 50)
        self.assertEqual(settings.GATE_THRESHOLD, 4)
        self.assertEqual(settings.PLATFORM_LABEL, "ml")
        self.assertNotEqual(Settings.PLATFORM_LABEL, "ml")

    def test_defaults(self) -> None:
        args = _build_parser().parse_args([])
        self.assertEqual(args.output_format, "table")
        self.assertFalse(args.health)
        self.assertFalse(args.verbose)
        self.assertIsNone(args.import_offers)


class TestImportOffers(unittest.TestCase):

    def setUp(self) -> None:
        self.tmp_dir = Path(tempfile.mkdtemp())
        self.settings = Settings()
        self.settings.DB_PATH = self.tmp_dir / "catalog.db"

    def test_import(self) -> None:
        path = self.tmp_dir / "offers.json"
        path.write_text(
            json.dumps([{"product_id": "p1", "external_id": "MLB1234567890"}]),
            encoding="utf-8",
        )
        self.assertEqual(run_import_offers(path, self.settings), EXIT_OK)
        db = CatalogDB(self.settings.DB_PATH)
        self.addCleanup(db.close)
        self.assertEqual(len(db.fetch_offer_page("mercadolivre", 0, 10)), 1)

    def test_missing_file(self) -> None:
        self.assertEqual(
            run_import_offers(self.tmp_dir / "nope.json", self.settings),
            EXIT_CRASH,
        )


@patch("src.scrapers.fetcher.curl_requests.Session")
class TestCliRefresh(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.settings = Settings()
        self.settings.DB_PATH = Path(tempfile.mkdtemp()) / "catalog.db"
        patcher = patch.dict(
            os.environ, {ENV_COOKIE: "", ENV_API_TOKEN: ""},
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_no_credential_exits_session_invalid(
        self, mock_session_cls: MagicMock,
    ) -> None:
        with patch("src.cli.runner.load_credential", return_value=None):
            code = await cli_refresh(self.settings, "json", save=False)
        self.assertEqual(code, EXIT_SESSION_INVALID)
        mock_session_cls.return_value.get.assert_not_called()


if __name__ == "__main__":
    unittest.main()
