# -*- test-case-name: onionens.test.test_server -*-

from twisted.application import service, internet
from twisted.internet import defer, endpoints
from twisted.web import server
from foolscap.logging import log

from onionens import messages
from onionens.backends import tor
from onionens.backends.acme import CertbotAuthority
from onionens.backends.ethereum import ENSNamingBackend
from onionens.backends.ipfs import IPFSStorageBackend
from onionens.cache import ContentCache
from onionens.onion import HiddenServiceDirectory
from onionens.resolver import NameResolver
from onionens.router import Router, ClearnetResource, OnionResource
from onionens.tls import TLSContextProvider, SNIContextFactory, \
     load_default_options

FACILITY = "onionens/server"


class Gateway(service.MultiService):
    """The whole gateway as a Twisted service: the four core components,
    the clearnet TLS listener (plus an optional plain HTTP one), and the
    loopback listener our hidden services forward to.

    Any collaborator not passed in is built from the config. When no
    controller is given, Tor is launched (or connected to, if
    'tor_control' is set) when the service starts; onion requests that
    arrive before it is up wait for it."""

    def __init__(self, config, reactor=None, naming=None, storage=None,
                 controller=None, authority=None):
        service.MultiService.__init__(self)
        if reactor is None:
            from twisted.internet import reactor
        self.config = config
        self._reactor = reactor

        if naming is None:
            naming = ENSNamingBackend(config["rpc_provider"])
        if storage is None:
            storage = IPFSStorageBackend(config["ipfs_api"], reactor)
        self._tor_ready = None
        if controller is None:
            self._tor_ready = defer.Deferred()
            controller = tor.PendingController(self._tor_ready)
        if authority is None:
            authority = CertbotAuthority(config.path("acme_config_dir"),
                                         config.path("acme_webroot"),
                                         email=config["acme_email"],
                                         staging=config["acme_staging"],
                                         reactor=reactor)
        self.storage = storage
        self.controller = controller

        self.resolver = NameResolver(naming, storage)
        self.cache = ContentCache(config.path("cache_dir"), storage,
                                  config["entry_suffix"])
        self.directory = HiddenServiceDirectory(controller,
                                                config["onion_port"])
        default = load_default_options(config.path("ssl_key"),
                                       config.path("ssl_cert"),
                                       config["domain"])
        challenge = {"webroot": config.path("acme_webroot"),
                     "staging": config["acme_staging"]}
        self.tls = TLSContextProvider(config["domain"], default, authority,
                                      challenge=challenge,
                                      timeout=config["issuance_timeout"],
                                      retry_after=config["issuance_retry"],
                                      reactor=reactor)
        self.router = Router(self.resolver, self.cache, self.directory,
                             config["domain"], config["onion_marker"],
                             config["naming_tld"])
        self._make_listeners()

    def _make_listeners(self):
        config = self.config
        clearnet = server.Site(ClearnetResource(
            self.router, challenge_root=config.path("acme_webroot")))
        ep = endpoints.SSL4ServerEndpoint(self._reactor,
                                          config["clearnet_port"],
                                          SNIContextFactory(self.tls),
                                          interface=config["clearnet_interface"])
        self._listen(ep, clearnet, "clearnet")
        if config["http_port"]:
            ep = endpoints.TCP4ServerEndpoint(
                self._reactor, config["http_port"],
                interface=config["clearnet_interface"])
            self._listen(ep, clearnet, "http")
        onion = server.Site(OnionResource(self.router))
        ep = endpoints.TCP4ServerEndpoint(self._reactor, config["onion_port"],
                                          interface="127.0.0.1")
        self._listen(ep, onion, "onion")

    def _listen(self, endpoint, site, name):
        s = internet.StreamServerEndpointService(endpoint, site)
        s.setName(name)
        s.setServiceParent(self)

    def startService(self):
        service.MultiService.startService(self)
        if self._tor_ready is None:
            log.msg(messages.SERVER_INIT, facility=FACILITY)
            return
        d = defer.maybeDeferred(self._start_tor)
        d.addCallbacks(self._tor_started, self._tor_failed)

    def _start_tor(self):
        if self.config["tor_control"]:
            ep = endpoints.clientFromString(self._reactor,
                                            self.config["tor_control"])
            return tor.connect(self._reactor, ep, self.config.basedir)
        return tor.launch(self._reactor, self.config.basedir,
                          self.config["tor_binary"])

    def _tor_started(self, controller):
        log.msg(messages.SERVER_INIT, facility=FACILITY)
        self._tor_ready.callback(controller)

    def _tor_failed(self, f):
        log.err(f, messages.SERVER_FAIL, facility=FACILITY, level=log.BAD)
        self._tor_ready.errback(f)
