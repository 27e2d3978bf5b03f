# -*- test-case-name: onionens.test.test_backends -*-

import os, json
from zope.interface import implementer
from twisted.internet.defer import inlineCallbacks, succeed, fail, Deferred
import txtorcon

from onionens.interfaces import IOnionController
from onionens.errors import ControllerError, UnknownVersion
from onionens.util import move_into_place

STATE_FILE = "hidden_services.json"


def load_state(basedir):
    state_file = os.path.join(basedir, STATE_FILE)
    if not os.path.exists(state_file):
        return {"version": 1, "services": {}}
    with open(state_file, "r") as f:
        data = json.load(f)
    if data["version"] != 1:
        raise UnknownVersion("unable to handle version %d" % data["version"])
    return data

def save_state(basedir, data):
    assert data["version"] == 1
    state_file = os.path.join(basedir, STATE_FILE)
    tmpfile = state_file + ".tmp"
    with open(tmpfile, "w") as f:
        json.dump(data, f, indent=2)
    move_into_place(tmpfile, state_file)


def service_hostname(hs):
    try:
        hostname = hs.hostname
    except EnvironmentError:
        # tor has not written the hostname file yet
        return None
    if isinstance(hostname, bytes):
        hostname = hostname.decode("ascii")
    return hostname.strip() if hostname else None


@implementer(IOnionController)
class TorController:
    """Manages filesystem hidden services on a Tor we have a control
    connection to. Each service lives in SERVICES_DIR/<name>, so the
    directory name is the service name. The table of services we created
    is kept in BASEDIR/hidden_services.json and re-registered at
    startup, since a launched Tor forgets its configuration when it
    exits."""

    def __init__(self, tor_protocol, basedir):
        self._protocol = tor_protocol
        self.basedir = basedir
        self.services_dir = os.path.join(basedir, "hidden_services")
        self._config = None
        if not os.path.isdir(self.services_dir):
            os.makedirs(self.services_dir, 0o700)

    @inlineCallbacks
    def reload_config(self):
        try:
            self._config = yield txtorcon.TorConfig.from_protocol(
                self._protocol)
        except Exception as e:
            raise ControllerError("reload failed: %r" % (e,))

    @inlineCallbacks
    def _get_config(self):
        if self._config is None:
            yield self.reload_config()
        return self._config

    @inlineCallbacks
    def list_services(self):
        config = yield self._get_config()
        services = []
        for hs in config.HiddenServices:
            thedir = getattr(hs, "dir", None)
            if not thedir:
                continue # ephemeral, not one of ours
            name = os.path.basename(thedir.rstrip(os.sep))
            services.append((name, service_hostname(hs)))
        return services

    @inlineCallbacks
    def create_service(self, name, ports):
        config = yield self._get_config()
        thedir = os.path.join(self.services_dir, name)
        hs = txtorcon.FilesystemOnionService(config, thedir, list(ports),
                                             version=3)
        config.HiddenServices.append(hs)

    @inlineCallbacks
    def save_config(self):
        config = yield self._get_config()
        try:
            yield config.save()
        except Exception as e:
            raise ControllerError("save failed: %r" % (e,))
        data = {"version": 1, "services": {}}
        for hs in config.HiddenServices:
            thedir = getattr(hs, "dir", None)
            if not thedir or os.path.dirname(thedir.rstrip(os.sep)) != \
                    self.services_dir:
                continue
            name = os.path.basename(thedir.rstrip(os.sep))
            data["services"][name] = {"ports": list(hs.ports)}
        save_state(self.basedir, data)

    @inlineCallbacks
    def restore(self):
        """Re-register every service recorded in hidden_services.json that
        the Tor does not know about."""
        services = load_state(self.basedir)["services"]
        listed = yield self.list_services()
        known = set([name for (name, hostname) in listed])
        missing = sorted(set(services) - known)
        for name in missing:
            yield self.create_service(name, services[name]["ports"])
        if missing:
            yield self.save_config()
        return missing


@inlineCallbacks
def launch(reactor, basedir, tor_binary=None):
    """Start a private Tor (data in BASEDIR/tor-data) and return a
    TorController attached to it."""
    data_directory = os.path.join(basedir, "tor-data")
    if not os.path.exists(data_directory):
        # txtorcon wants to chdir into it before spawning tor
        os.mkdir(data_directory, 0o700)
    tor = yield txtorcon.launch(reactor, data_directory=data_directory,
                                tor_binary=tor_binary)
    controller = TorController(tor.protocol, basedir)
    yield controller.restore()
    return controller

@inlineCallbacks
def connect(reactor, control_endpoint, basedir):
    """Attach to an already-running Tor on 'control_endpoint'."""
    tor = yield txtorcon.connect(reactor, control_endpoint)
    controller = TorController(tor.protocol, basedir)
    yield controller.restore()
    return controller


@implementer(IOnionController)
class PendingController:
    """Stands in for a TorController that is still being launched. Calls
    made before it is ready wait for it; if the launch failed they fail
    with ControllerError."""

    def __init__(self, when_controller):
        self._controller = None
        self._failure = None
        self._waiting = []
        when_controller.addCallbacks(self._ready, self._failed)

    def _ready(self, controller):
        self._controller = controller
        waiting, self._waiting = self._waiting, []
        for d in waiting:
            d.callback(controller)

    def _failed(self, f):
        self._failure = ControllerError("Tor is unavailable: %s"
                                        % (f.getErrorMessage(),))
        waiting, self._waiting = self._waiting, []
        for d in waiting:
            d.errback(self._failure)

    def when_ready(self):
        if self._controller is not None:
            return succeed(self._controller)
        if self._failure is not None:
            return fail(self._failure)
        d = Deferred()
        self._waiting.append(d)
        return d

    def _forward(self, methname, *args):
        d = self.when_ready()
        d.addCallback(lambda c: getattr(c, methname)(*args))
        return d

    def list_services(self):
        return self._forward("list_services")

    def create_service(self, name, ports):
        return self._forward("create_service", name, ports)

    def reload_config(self):
        return self._forward("reload_config")

    def save_config(self):
        return self._forward("save_config")
