import json
import tempfile
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from farepass_cli.core.controller import SessionController
from farepass_cli.core.errors import NetworkUnavailable
from farepass_cli.core.keystore import DeviceKeystore
from farepass_cli.core.proof import RotatingProof, proof_payload, slot_for
from farepass_cli.core.store import SessionStore
from farepass_cli.main import app

from support import FakeBackend, make_credential, server_keys

runner = CliRunner()


class CLITestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = Path(self.tmp.name)
        self.store = SessionStore(self.dir / "session.json")
        self.keystore = DeviceKeystore(self.dir / "device_key.pem")
        self.backend = FakeBackend()

        def build_controller():
            return SessionController(self.store, self.keystore, api=self.backend, sleep=lambda _: None)

        for target, value in (
            ("farepass_cli.ride.commands.build_controller", build_controller),
            ("farepass_cli.ride.commands.open_store", lambda: self.store),
            ("farepass_cli.ride.commands.open_keystore", lambda: self.keystore),
            ("farepass_cli.device.commands.open_store", lambda: self.store),
            ("farepass_cli.device.commands.open_keystore", lambda: self.keystore),
            ("farepass_cli.fare.commands.open_store", lambda: self.store),
        ):
            patcher = patch(target, value)
            patcher.start()
            self.addCleanup(patcher.stop)

    def invoke(self, *args):
        return runner.invoke(app, list(args))


class TestDeviceCommands(CLITestCase):

    @patch("farepass_cli.device.commands.api_register_device")
    def test_register(self, mock_register):
        result = self.invoke("device", "register")
        self.assertEqual(result.exit_code, 0, result.stdout)
        device_id = self.store.get_or_create_device_id()
        self.assertIn(f"Device registered: {device_id}", result.stdout)
        mock_register.assert_called_once_with(device_id, self.keystore.public_key_pem())
        self.assertTrue(self.store.is_registered())

    @patch("farepass_cli.device.commands.api_register_device")
    def test_register_offline(self, mock_register):
        mock_register.side_effect = NetworkUnavailable("Backend unreachable")
        result = self.invoke("device", "register")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Registration failed: Backend unreachable", result.stdout)
        self.assertFalse(self.store.is_registered())

    def test_show(self):
        result = self.invoke("device", "show", "--public-key")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Registered: no", result.stdout)
        self.assertIn("BEGIN PUBLIC KEY", result.stdout)


class TestRideCommands(CLITestCase):

    def test_start_and_end(self):
        result = self.invoke("ride", "start", "--vehicle", "TRAM_12")
        self.assertEqual(result.exit_code, 0, result.stdout)
        self.assertIn("Session started: sess-1", result.stdout)
        self.assertEqual(self.backend.sessions["sess-1"]["vehicleId"], "TRAM_12")

        result = self.invoke("ride", "end")
        self.assertEqual(result.exit_code, 0, result.stdout)
        self.assertIn("Session ended. Fare today: 3.00 EUR", result.stdout)

    def test_start_twice(self):
        self.invoke("ride", "start")
        result = self.invoke("ride", "start")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Session already active: sess-1", result.stdout)
        self.assertEqual(self.backend.start_calls, 1)

    def test_start_offline(self):
        self.backend.fail_start_with = [NetworkUnavailable("Backend unreachable")] * 3
        result = self.invoke("ride", "start")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Session start failed (NetworkUnavailable)", result.stdout)

    def test_end_without_session(self):
        result = self.invoke("ride", "end")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("SessionNotFound", result.stdout)

    def test_end_already_ended(self):
        self.invoke("ride", "start")
        self.invoke("ride", "end")
        result = self.invoke("ride", "end", "--session-id", "sess-1")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Session was already ended.", result.stdout)

    def test_capped_fare_is_shown(self):
        for _ in range(2):
            self.invoke("ride", "start")
            self.invoke("ride", "end")
        self.invoke("ride", "start")
        result = self.invoke("ride", "end")
        self.assertIn("8.00 EUR (capped)", result.stdout)

    def test_status(self):
        result = self.invoke("ride", "status")
        self.assertIn("No active session.", result.stdout)

        self.invoke("ride", "start")
        result = self.invoke("ride", "status")
        self.assertIn("Session:  sess-1", result.stdout)
        self.assertIn("Vehicle:  BUS_4711", result.stdout)

    def test_proof(self):
        self.invoke("ride", "start")
        result = self.invoke("ride", "proof")
        self.assertEqual(result.exit_code, 0)
        proof = RotatingProof.from_json(result.stdout.strip())
        self.assertEqual(proof.token, "token-1")
        self.assertLessEqual(abs(proof.slot - slot_for(time.time())), 1)

    def test_proof_without_session(self):
        result = self.invoke("ride", "proof")
        self.assertEqual(result.exit_code, 1)

    def test_watch_replays_feed(self):
        feed = self.dir / "feed.jsonl"
        records = [{"name": "BUS_4711", "rssi": -60, "after": 0.05} for _ in range(10)]
        feed.write_text("\n".join(json.dumps(r) for r in records))

        result = self.invoke(
            "ride", "watch", "--feed", str(feed), "--stable", "0.2", "--loss-timeout", "0.3", "--duration", "2"
        )

        self.assertEqual(result.exit_code, 0, result.stdout)
        self.assertIn("Session started: sess-1", result.stdout)
        self.assertIn("Beacon lost. Session ended.", result.stdout)
        self.assertTrue(self.backend.sessions["sess-1"]["ended"])

    def test_watch_missing_feed(self):
        result = self.invoke("ride", "watch", "--feed", str(self.dir / "missing.jsonl"))
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Cannot open scan feed", result.stdout)


class TestFareCommands(CLITestCase):

    @patch("farepass_cli.fare.commands.api_get_fare_today")
    def test_today(self, mock_fare):
        mock_fare.return_value = {"totalCents": 800, "capped": True}
        result = self.invoke("fare", "today")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Fare today: 8.00 EUR (day cap reached)", result.stdout)
        mock_fare.assert_called_once_with(self.store.get_or_create_device_id())

    @patch("farepass_cli.fare.commands.api_get_trips_today")
    def test_trips(self, mock_trips):
        mock_trips.return_value = {
            "trips": [
                {"sessionId": "sess-1", "vehicleId": "BUS_4711", "startTime": 1700000000, "endTime": 1700000900},
                {"sessionId": "sess-2", "vehicleId": "BUS_4711", "startTime": 1700003600, "endTime": 1700004500},
            ],
            "tripCount": 2,
            "pricePerTrip": 300,
            "subtotalCents": 600,
            "totalCents": 600,
            "capped": False,
            "dayCap": 800,
        }
        result = self.invoke("fare", "trips")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("22:13-22:28 UTC", result.stdout)
        self.assertIn("Trips:     2 x 3.00 EUR", result.stdout)
        self.assertIn("Total:     6.00 EUR", result.stdout)

    @patch("farepass_cli.fare.commands.api_get_fare_today")
    def test_today_offline(self, mock_fare):
        mock_fare.side_effect = NetworkUnavailable("Backend unreachable")
        result = self.invoke("fare", "today")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Could not fetch fare", result.stdout)


class TestInspectCommands(CLITestCase):

    def setUp(self):
        super().setUp()
        self.key_file = self.dir / "backend_public.pem"
        patcher = patch("farepass_cli.inspector.commands.SERVER_KEY_FILE", self.key_file)
        patcher.start()
        self.addCleanup(patcher.stop)

    def signed_proof(self, slot):
        token = make_credential(self.keystore.public_key_pem(), valid_until=int(time.time()) + 3600)
        return RotatingProof(token, slot, self.keystore.sign(proof_payload(token, slot))).to_json()

    @patch("farepass_cli.inspector.commands.api_get_backend_public_key")
    def test_fetch_key(self, mock_fetch):
        mock_fetch.return_value = server_keys()[1]
        result = self.invoke("inspect", "fetch-key")
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(self.key_file.read_text(), server_keys()[1])

    @patch("farepass_cli.inspector.commands.api_get_backend_public_key")
    def test_fetch_key_offline(self, mock_fetch):
        mock_fetch.side_effect = NetworkUnavailable("Backend unreachable")
        result = self.invoke("inspect", "fetch-key")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Could not fetch backend key", result.stdout)

    def test_verify_green(self):
        self.key_file.write_text(server_keys()[1])
        result = self.invoke("inspect", "verify", self.signed_proof(slot_for(time.time())))
        self.assertEqual(result.exit_code, 0, result.stdout)
        self.assertIn("RESULT: GREEN", result.stdout)

    def test_verify_red_stale_slot(self):
        self.key_file.write_text(server_keys()[1])
        result = self.invoke("inspect", "verify", self.signed_proof(slot_for(time.time()) - 5))
        self.assertEqual(result.exit_code, 2)
        self.assertIn("RESULT: RED - SlotStale", result.stdout)

    def test_verify_from_file(self):
        self.key_file.write_text(server_keys()[1])
        proof_file = self.dir / "proof.json"
        proof_file.write_text(self.signed_proof(slot_for(time.time())))
        result = self.invoke("inspect", "verify", "--file", str(proof_file))
        self.assertIn("RESULT: GREEN", result.stdout)

    def test_verify_requires_cached_key(self):
        result = self.invoke("inspect", "verify", "{}")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("fetch-key", result.stdout)


if __name__ == "__main__":
    unittest.main()
