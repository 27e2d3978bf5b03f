from twisted.trial import unittest
from twisted.internet import defer

from onionens.onion import HiddenServiceDirectory
from onionens.errors import ProvisioningFailed, DirectoryError
from onionens.ident import ContentIdentifier
from onionens.test.common import FakeController, ShouldFailMixin, \
     onion_hostname_for, CID_A, CID_B


class Directory(ShouldFailMixin, unittest.TestCase):
    def setUp(self):
        self.controller = FakeController()
        self.directory = HiddenServiceDirectory(self.controller, 3000)
        self.ident = ContentIdentifier.immutable(CID_A)

    def test_ports(self):
        self.assertEqual(self.directory.ports, ["80 127.0.0.1:3000"])

    @defer.inlineCallbacks
    def test_provision(self):
        onion = yield self.directory.address_for(self.ident)
        self.assertEqual(onion, onion_hostname_for(CID_A))
        self.assertEqual(self.controller.creates,
                         [(CID_A, ["80 127.0.0.1:3000"])])
        self.assertEqual(self.controller.saves, 1)

    @defer.inlineCallbacks
    def test_idempotent(self):
        first = yield self.directory.address_for(self.ident)
        second = yield self.directory.address_for(self.ident)
        self.assertEqual(first, second)
        self.assertEqual(len(self.controller.creates), 1)
        self.assertEqual(self.controller.saves, 1)

    @defer.inlineCallbacks
    def test_existing_service(self):
        self.controller.services.append((CID_B, onion_hostname_for(CID_B)))
        onion = yield self.directory.address_for(
            ContentIdentifier.immutable(CID_B))
        self.assertEqual(onion, onion_hostname_for(CID_B))
        self.assertEqual(self.controller.creates, [])

    def test_concurrent_provisioning(self):
        self.controller.hold_creates = True
        ds = [self.directory.address_for(self.ident) for i in range(4)]
        for d in ds:
            self.assertNoResult(d)
        self.controller.release()
        results = set([self.successResultOf(d) for d in ds])
        self.assertEqual(results, set([onion_hostname_for(CID_A)]))
        self.assertEqual(len(self.controller.creates), 1)

    @defer.inlineCallbacks
    def test_round_trip(self):
        onion = yield self.directory.address_for(self.ident)
        ident = yield self.directory.identifier_for(onion)
        self.assertEqual(ident, self.ident)
        # a subdomain of the address, a port, and shouting all work
        ident = yield self.directory.identifier_for(
            "www." + onion.upper() + ":80")
        self.assertEqual(ident, self.ident)

    @defer.inlineCallbacks
    def test_unknown_address(self):
        yield self.directory.address_for(self.ident)
        ident = yield self.directory.identifier_for(
            onion_hostname_for(CID_B))
        self.assertEqual(ident, None)

    @defer.inlineCallbacks
    def test_not_an_onion(self):
        ident = yield self.directory.identifier_for("example.com")
        self.assertEqual(ident, None)
        self.assertEqual(self.controller.reloads, 0)

    @defer.inlineCallbacks
    def test_foreign_service(self):
        # somebody else's service on the same Tor
        self.controller.services.append(("ssh", onion_hostname_for("ssh")))
        ident = yield self.directory.identifier_for(onion_hostname_for("ssh"))
        self.assertEqual(ident, None)

    @defer.inlineCallbacks
    def test_sees_external_changes(self):
        onion = yield self.directory.address_for(self.ident)
        self.controller.services = []
        ident = yield self.directory.identifier_for(onion)
        self.assertEqual(ident, None)

    @defer.inlineCallbacks
    def test_address_never_moves(self):
        onion = yield self.directory.address_for(self.ident)
        self.controller.services.append((CID_B, onion))
        by_name = yield self.directory.refresh()
        self.assertEqual(by_name[CID_A], onion)
        ident = yield self.directory.identifier_for(onion)
        self.assertEqual(ident, self.ident)

    @defer.inlineCallbacks
    def test_broken_controller(self):
        self.controller.broken = True
        yield self.shouldFail(ProvisioningFailed, "provision", None,
                              self.directory.address_for, self.ident)
        yield self.shouldFail(DirectoryError, "reverse", None,
                              self.directory.identifier_for,
                              onion_hostname_for(CID_A))
        self.assertEqual(self.controller.creates, [])

    @defer.inlineCallbacks
    def test_no_hostname(self):
        self.controller.publish_hostnames = False
        yield self.shouldFail(ProvisioningFailed, "no_hostname",
                              "no onion hostname",
                              self.directory.address_for, self.ident)
        # the service exists now, so a retry does not create a second one
        self.controller.services = [(CID_A, onion_hostname_for(CID_A))]
        onion = yield self.directory.address_for(self.ident)
        self.assertEqual(onion, onion_hostname_for(CID_A))
        self.assertEqual(len(self.controller.creates), 1)
