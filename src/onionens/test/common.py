import io, hashlib, tarfile
import mock
from zope.interface import implementer
from twisted.internet import defer
from twisted.python import failure

from onionens import base32
from onionens.interfaces import INamingBackend, IStorageBackend, \
     IOnionController, ICertificateAuthority
from onionens.ident import ContentRecord
from onionens.errors import StorageBackendError, ControllerError
from onionens.tls import create_self_signed, options_from_pem

# well-known public identifiers, in canonical (CIDv1 base32) form
CID_A = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
CID_B = "bafybeihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"
CID_V0 = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"

# an ENS contenthash record pointing at an ipfs-ns CIDv1
IPFS_HEX = ("e3010170122029f2d17be6139079dc48696d1f582a8530eb9805b561eda517"
            "e22a892c7e3f1f")

INDEX_HTML = b"<html><body>hello from the distributed web</body></html>"


def make_tar(members):
    """Build a tar archive in memory. 'members' maps a path to its bytes,
    or to None for a directory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tf:
        for name in sorted(members):
            data = members[name]
            info = tarfile.TarInfo(name)
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tf.addfile(info)
            else:
                info.size = len(data)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()

def site_tar(cid, extra=None):
    members = {cid: None, cid + "/index.html": INDEX_HTML}
    for name, data in (extra or {}).items():
        members[cid + "/" + name] = data
    return make_tar(members)


def run_threads_inline(testcase):
    """Make ContentCache call its deferToThread work synchronously for the
    rest of this test, so results are available without spinning the
    reactor. Returns a list that collects the name of each function that
    would have gone to the thread pool."""
    calls = []
    def _inline(f, *args, **kwargs):
        calls.append(f.__name__)
        return defer.maybeDeferred(f, *args, **kwargs)
    patcher = mock.patch("onionens.cache.deferToThread", _inline)
    patcher.start()
    testcase.addCleanup(patcher.stop)
    return calls


class _Held:
    # calls that return Deferreds the test fires by hand
    def __init__(self):
        self.held = []

    def _maybe_hold(self, hold, result):
        if not hold:
            return defer.maybeDeferred(result)
        d = defer.Deferred()
        self.held.append((d, result))
        return d

    def release(self):
        held, self.held = self.held, []
        for d, result in held:
            try:
                r = result()
            except Exception:
                d.errback(failure.Failure())
            else:
                d.callback(r)


@implementer(INamingBackend)
class FakeNaming:
    def __init__(self, records=None):
        self.records = dict(records or {})
        self.calls = []
        self.broken = False

    def get_content_record(self, label):
        self.calls.append(label)
        if self.broken:
            return defer.fail(ConnectionRefusedError("rpc down"))
        return defer.succeed(self.records.get(label))

def ipfs_record(cid):
    return ContentRecord("ipfs-ns", cid)

def ipns_record(name):
    return ContentRecord("ipns-ns", name)


@implementer(IStorageBackend)
class FakeStorage(_Held):
    def __init__(self, payloads=None, names=None):
        _Held.__init__(self)
        self.payloads = dict(payloads or {})
        self.names = dict(names or {})
        self.pinned = set()
        self.fetches = []
        self.pins = []
        self.unpins = []
        self.hold_fetches = False
        self.broken_fetch = False
        self.broken_pins = False

    def fetch(self, cid):
        self.fetches.append(cid)
        def _fetch():
            if self.broken_fetch:
                raise StorageBackendError("get returned HTTP 500")
            return self.payloads.get(cid, b"")
        return self._maybe_hold(self.hold_fetches, _fetch)

    def pin(self, cid):
        self.pins.append(cid)
        if self.broken_pins:
            return defer.fail(StorageBackendError("pin/add failed"))
        self.pinned.add(cid)
        return defer.succeed(None)

    def unpin(self, cid):
        self.unpins.append(cid)
        if self.broken_pins or cid not in self.pinned:
            return defer.fail(StorageBackendError("not pinned"))
        self.pinned.discard(cid)
        return defer.succeed(None)

    def list_pinned(self):
        return defer.succeed(sorted(self.pinned))

    def resolve_name(self, name):
        if name not in self.names:
            return defer.fail(StorageBackendError("could not resolve name"))
        return defer.succeed(self.names[name])


def onion_hostname_for(name):
    digest = hashlib.sha256(name.encode("ascii")).digest()
    return base32.encode(digest + digest[:3]) + ".onion"


@implementer(IOnionController)
class FakeController(_Held):
    def __init__(self):
        _Held.__init__(self)
        self.services = [] # (name, hostname)
        self.pending = [] # created but not saved yet
        self.creates = []
        self.reloads = 0
        self.saves = 0
        self.hold_creates = False
        self.broken = False
        self.publish_hostnames = True

    def list_services(self):
        if self.broken:
            return defer.fail(ControllerError("control port closed"))
        return defer.succeed(list(self.services))

    def create_service(self, name, ports):
        self.creates.append((name, list(ports)))
        def _create():
            self.pending.append(name)
        return self._maybe_hold(self.hold_creates, _create)

    def reload_config(self):
        self.reloads += 1
        if self.broken:
            return defer.fail(ControllerError("control port closed"))
        return defer.succeed(None)

    def save_config(self):
        self.saves += 1
        for name in self.pending:
            hostname = None
            if self.publish_hostnames:
                hostname = onion_hostname_for(name)
            self.services.append((name, hostname))
        self.pending = []
        return defer.succeed(None)


_material = {}

def pem_material(common_name):
    if common_name not in _material:
        _material[common_name] = create_self_signed(common_name)
    return _material[common_name]

def default_options(common_name="3th.ws"):
    return options_from_pem(*pem_material(common_name))


@implementer(ICertificateAuthority)
class FakeAuthority(_Held):
    def __init__(self):
        _Held.__init__(self)
        self.store = {}
        self.issued = []
        self.hold_issues = False
        self.broken = False

    def issue(self, hostname, alt_names, challenge):
        self.issued.append((hostname, list(alt_names), challenge))
        def _issue():
            if self.broken:
                raise RuntimeError("acme challenge failed")
            self.store[hostname] = pem_material(hostname)
        return self._maybe_hold(self.hold_issues, _issue)

    def get(self, hostname):
        return self.store.get(hostname)


class ShouldFailMixin:

    def shouldFail(self, expected_failure, which, substring,
                   callable, *args, **kwargs):
        assert substring is None or isinstance(substring, str)
        d = defer.maybeDeferred(callable, *args, **kwargs)
        def done(res):
            if isinstance(res, failure.Failure):
                if not res.check(expected_failure):
                    self.fail("got failure %s, was expecting %s"
                              % (res, expected_failure))
                if substring:
                    self.assertTrue(substring in str(res),
                                    "%s: substring '%s' not in '%s'"
                                    % (which, substring, str(res)))
                # make the Failure available to a subsequent callback, but
                # keep it from triggering an errback
                return [res]
            else:
                self.fail("%s was supposed to raise %s, not get '%s'" %
                          (which, expected_failure, res))
        d.addBoth(done)
        return d
