import os, json
from twisted.trial import unittest

from onionens.config import GatewayConfig, DEFAULTS, CONFIG_FILE
from onionens.errors import UnknownVersion


class Config(unittest.TestCase):
    def test_defaults(self):
        c = GatewayConfig("base")
        self.assertEqual(c["domain"], "3th.ws")
        self.assertEqual(c["onion_port"], 3000)
        self.assertEqual(c["tor_control"], None)
        self.assertEqual(dict(c.items()), DEFAULTS)

    def test_unknown_key(self):
        self.assertRaises(ValueError, GatewayConfig, "base", colour="blue")
        c = GatewayConfig("base")
        self.assertRaises(KeyError, c.__setitem__, "colour", "blue")

    def test_ints(self):
        c = GatewayConfig("base", onion_port="3001")
        self.assertEqual(c["onion_port"], 3001)
        c["http_port"] = "80"
        self.assertEqual(c["http_port"], 80)
        c["http_port"] = None
        self.assertEqual(c["http_port"], None)

    def test_paths(self):
        basedir = os.path.abspath("base")
        c = GatewayConfig("base", ssl_key="/etc/key.pem")
        self.assertEqual(c.path("cache_dir"), os.path.join(basedir, "cache"))
        self.assertEqual(c.path("ssl_key"), "/etc/key.pem")
        self.assertRaises(AssertionError, c.path, "domain")

    def test_save_load(self):
        basedir = self.mktemp()
        os.makedirs(basedir)
        c = GatewayConfig(basedir, domain="example.org", http_port=8080)
        c.save()
        self.assertEqual(os.listdir(basedir), [CONFIG_FILE])
        c2 = GatewayConfig.load(basedir)
        self.assertEqual(c2["domain"], "example.org")
        self.assertEqual(c2["http_port"], 8080)
        self.assertEqual(c2.items(), c.items())

    def test_unknown_version(self):
        basedir = self.mktemp()
        os.makedirs(basedir)
        with open(os.path.join(basedir, CONFIG_FILE), "w") as f:
            json.dump({"version": 2, "gateway": {}}, f)
        e = self.assertRaises(UnknownVersion, GatewayConfig.load, basedir)
        self.assertIn("version 2", str(e))
