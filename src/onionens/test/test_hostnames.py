from twisted.trial import unittest

from onionens import hostnames, base32
from onionens.errors import BadHostname


class Classify(unittest.TestCase):
    def test_levels(self):
        c = hostnames.classify
        self.assertEqual(c("3th.ws", "3th.ws"), hostnames.ROOT)
        self.assertEqual(c("3TH.ws.", "3th.ws"), hostnames.ROOT)
        self.assertEqual(c("sub.3th.ws", "3th.ws"), hostnames.FIRST_LEVEL)
        self.assertEqual(c("sub.3th.ws:443", "3th.ws"),
                         hostnames.FIRST_LEVEL)
        self.assertEqual(c("onion.sub.3th.ws", "3th.ws"), hostnames.DEEPER)
        self.assertEqual(c("example.com", "3th.ws"), hostnames.FOREIGN)
        self.assertEqual(c("evil3th.ws", "3th.ws"), hostnames.FOREIGN)
        self.assertEqual(c("a..3th.ws", "3th.ws"), hostnames.FOREIGN)

    def test_wildcard(self):
        self.assertEqual(hostnames.wildcard_for("a.b.3th.ws"), "*.b.3th.ws")
        self.assertEqual(hostnames.wildcard_for("sub.3th.ws"), "*.3th.ws")
        self.assertEqual(hostnames.wildcard_for("localhost"), None)


class Parse(unittest.TestCase):
    def test_clearnet(self):
        p = hostnames.parse_host("example.3th.ws", "3th.ws")
        self.assertEqual(p.label, "example.eth")
        self.assertFalse(p.onion_mode)

    def test_onion_marker(self):
        p = hostnames.parse_host("onion.example.3th.ws", "3th.ws")
        self.assertEqual(p.label, "example.eth")
        self.assertTrue(p.onion_mode)

    def test_ens_subdomain(self):
        p = hostnames.parse_host("blog.vitalik.3th.ws:8443", "3th.ws")
        self.assertEqual(p.label, "blog.vitalik.eth")
        self.assertFalse(p.onion_mode)

    def test_other_tld(self):
        p = hostnames.parse_host("Example.gw.test", "gw.test", tld="crypto")
        self.assertEqual(p.label, "example.crypto")

    def test_rejects(self):
        self.assertRaises(BadHostname, hostnames.parse_host, "3th.ws",
                          "3th.ws")
        self.assertRaises(BadHostname, hostnames.parse_host, "example.org",
                          "3th.ws")
        self.assertRaises(BadHostname, hostnames.parse_host, "[::1]:80",
                          "3th.ws")


class Onion(unittest.TestCase):
    def test_is_onion_hostname(self):
        v3 = "a" * 56 + ".onion"
        self.assertTrue(base32.is_onion_hostname(v3))
        self.assertTrue(base32.is_onion_hostname("www." + v3))
        self.assertTrue(base32.is_onion_hostname("b" * 16 + ".onion"))
        self.assertFalse(base32.is_onion_hostname("a" * 55 + ".onion"))
        self.assertFalse(base32.is_onion_hostname("1" * 56 + ".onion"))
        self.assertFalse(base32.is_onion_hostname("example.3th.ws"))

    def test_encode(self):
        self.assertEqual(base32.encode(b"\x00\x00"), "aaaa")
        self.assertTrue(base32.is_base32("abc456"))
        self.assertFalse(base32.is_base32("a b c"))
