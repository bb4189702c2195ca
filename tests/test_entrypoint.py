import common, unittest
import contextlib, io, os, tempfile
from unittest import mock

import entrypoint
from firewall.config import RelayConfig
from firewall.relay import PortRelay

class MainTests(common.TestCase):

    def setUp(self):
        self.dir = tempfile.TemporaryDirectory()
        self.cfg_path = os.path.join(self.dir.name, "missing.yml")

    def tearDown(self):
        self.dir.cleanup()

    def run_main(self, *args):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code = entrypoint.main(["--config", self.cfg_path] + list(args))
        return code, err.getvalue()

    def test_missing_arguments(self):
        code, err = self.run_main()
        self.assertEqual(1, code)
        self.assertContains("no listen IP given", err)
        self.assertContains("<IPv4>", err)

    def test_bad_address(self):
        code, err = self.run_main("0.0.0.0", "7777")
        self.assertEqual(1, code)
        self.assertContains("wildcard", err)

    def test_bad_port(self):
        code, err = self.run_main("192.0.2.1", "7777", "65535")
        self.assertEqual(1, code)
        self.assertContains("65535 is not a valid port number", err)
        self.assertEmpty(entrypoint.relays)

    def test_bad_ui_address_stops_before_relays(self):
        with mock.patch.object(entrypoint, "start_all") as start_all:
            code, err = self.run_main("--ui", "127.0.0.1:abc", "192.0.2.1", "7777")
        self.assertEqual(1, code)
        self.assertContains("abc is not a valid port number", err)
        start_all.assert_not_called()

    def test_bad_ui_address_in_config_file(self):
        with open(self.cfg_path, "w", encoding="utf-8") as f:
            f.write("ui:\n  listen: 127.0.0.1:abc\n")
        with mock.patch.object(entrypoint, "start_all") as start_all:
            code, _err = self.run_main("192.0.2.1", "7777")
        self.assertEqual(1, code)
        start_all.assert_not_called()

class StatusUITests(common.TestCase):

    def setUp(self):
        self.client = entrypoint.app.test_client()
        self.relay = PortRelay(RelayConfig("192.0.2.1", 7777))
        self.relay.blocked.add("198.51.100.7")
        entrypoint.relays.append(self.relay)

    def tearDown(self):
        entrypoint.relays.remove(self.relay)
        entrypoint.state["log_file"] = None
        self.relay.close()

    def test_status_json(self):
        r = self.client.get("/status")
        self.assertEqual(200, r.status_code)
        item = self.assertSingle(r.get_json()["relays"])
        self.assertEqual(7777, item["port"])
        self.assertEqual("192.0.2.1:7777", item["listen"])
        self.assertFalse(item["listening"])
        self.assertEqual(0, item["sessions"])
        self.assertEqual(["198.51.100.7"], item["blocked"])

    def test_index(self):
        r = self.client.get("/")
        self.assertEqual(200, r.status_code)
        body = r.get_data(as_text=True)
        self.assertContains("192.0.2.1:7777", body)
        self.assertContains("198.51.100.7", body)

    def test_logs_without_file(self):
        self.assertEqual(404, self.client.get("/logs").status_code)

    def test_logs_tail(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "firewall.log")
            with open(path, "w", encoding="utf-8") as f:
                f.write("".join("line %d\n" % i for i in range(10)))
            entrypoint.state["log_file"] = path
            r = self.client.get("/logs?n=3")
            self.assertEqual(200, r.status_code)
            self.assertEqual("line 7\nline 8\nline 9", r.get_data(as_text=True))

if __name__ == "__main__":
    unittest.main()
