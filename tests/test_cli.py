import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from wa_checker.operations.session_store import SessionStore, SettingsStore
from wa_checker.wa_checker_cli import main


class DummyResponse:
    def __init__(self, status_code=200, json_obj=None):
        self.status_code = status_code
        self._json = json_obj
        self.headers = {}

    def json(self):
        if self._json is None:
            raise ValueError("No JSON")
        return self._json


@patch.dict(os.environ, {}, clear=True)
class TestCLI(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def run_cli(self, *args):
        return main(["--data-dir", self.tmpdir, "--no-banner", *args])

    def test_settings_are_saved(self):
        self.assertEqual(self.run_cli("settings", "--api-key", "abc123", "--concurrency", "2"), 0)
        settings = SettingsStore(self.tmpdir).get_settings()
        self.assertEqual(settings.api_key, "abc123")
        self.assertEqual(settings.concurrent_requests, 2)

    def test_check_requires_api_key(self):
        self.assertEqual(self.run_cli("check", "-n", "+12025550102"), 2)
        self.assertEqual(SessionStore(self.tmpdir).list(), [])

    @patch("requests.Session.request")
    def test_check_persists_session_and_exports(self, mock_request):
        mock_request.return_value = DummyResponse(json_obj={"isWAContact": True, "name": "Ann"})
        output = os.path.join(self.tmpdir, "out.csv")

        code = self.run_cli("check", "-n", "+1 202-555-0102", "-n", "12025550102", "-n", "not-a-number",
                            "--api-key", "abc123", "--retry-delay", "0", "-o", output)

        self.assertEqual(code, 0)
        self.assertEqual(mock_request.call_count, 1)
        sessions = SessionStore(self.tmpdir).list()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].status, "completed")
        self.assertEqual(sessions[0].successful_checks, 1)
        self.assertTrue(os.path.exists(output))

        self.assertEqual(self.run_cli("sessions"), 0)
        self.assertEqual(self.run_cli("show", sessions[0].id), 0)
        self.assertEqual(self.run_cli("star", sessions[0].id), 0)
        self.assertTrue(SessionStore(self.tmpdir).get(sessions[0].id).is_starred)
        self.assertEqual(self.run_cli("resume", sessions[0].id), 1)
        self.assertEqual(self.run_cli("delete", sessions[0].id), 0)
        self.assertEqual(self.run_cli("delete", sessions[0].id), 1)

    def test_generate_to_file(self):
        output = os.path.join(self.tmpdir, "numbers.txt")
        self.assertEqual(self.run_cli("generate", "de", "3", "-o", output), 0)
        with open(output) as f:
            lines = [line.strip() for line in f if line.strip()]
        self.assertEqual(len(lines), 3)
        self.assertTrue(all(line.startswith("+49") for line in lines))

    def test_unknown_session(self):
        self.assertEqual(self.run_cli("show", "session_0_missing"), 1)
        self.assertEqual(self.run_cli("export", "session_0_missing"), 1)


if __name__ == '__main__':
    unittest.main()
