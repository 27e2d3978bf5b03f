# -*- test-case-name: onionens.test.test_onion -*-

from twisted.internet.defer import inlineCallbacks, maybeDeferred
from foolscap.logging import log

from onionens.errors import DirectoryError, ProvisioningFailed
from onionens.base32 import is_onion_hostname
from onionens.hostnames import normalize
from onionens.ident import ContentIdentifier
from onionens.util import SingleFlight

FACILITY = "onionens/onion"


class HiddenServiceDirectory:
    """Maps content identifiers to onion addresses and back.

    Every hidden service is named after the identifier it serves, so the
    controller's own service table is the authority. We keep a
    bidirectional index of it, rebuilt from a fresh reload before every
    query because the table can change underneath us. Provisioning is
    serialized per identifier."""

    def __init__(self, controller, onion_port, public_port=80,
                 local_host="127.0.0.1"):
        self._controller = controller
        self.onion_port = onion_port
        self.public_port = public_port
        self.local_host = local_host
        self._by_name = {} # k: identifier string, v: onion hostname or None
        self._by_host = {} # k: onion hostname, v: identifier string
        self._flight = SingleFlight()

    @property
    def ports(self):
        return ["%d %s:%d" % (self.public_port, self.local_host,
                              self.onion_port)]

    @inlineCallbacks
    def refresh(self):
        """Reload the controller and rebuild both indexes. Fires with the
        by-identifier map."""
        yield maybeDeferred(self._controller.reload_config)
        services = yield maybeDeferred(self._controller.list_services)
        by_name = {}
        by_host = {}
        for name, hostname in services:
            if not name:
                continue
            name = name.lower()
            if hostname:
                hostname = normalize(hostname)
                known = self._by_host.get(hostname)
                if known is not None and known != name:
                    # an address never moves to another identifier
                    log.msg(format="controller moved %(host)s from %(old)s"
                            " to %(new)s, ignoring", host=hostname,
                            old=known, new=name, facility=FACILITY,
                            level=log.WEIRD)
                    by_host[hostname] = known
                    continue
                by_host[hostname] = name
            by_name[name] = hostname
        self._by_name = by_name
        self._by_host = by_host
        return by_name

    def address_for(self, ident):
        """Fire with the onion hostname serving 'ident', creating the
        hidden service first if it does not exist yet. Errbacks with
        ProvisioningFailed."""
        name = str(ident).lower()
        return self._flight.run(name, self._provision, name)

    @inlineCallbacks
    def _provision(self, name):
        try:
            by_name = yield self.refresh()
        except Exception:
            log.err(None, "unable to query the Tor controller",
                    facility=FACILITY, level=log.UNUSUAL)
            raise ProvisioningFailed(name)
        if by_name.get(name):
            return by_name[name]

        lp = log.msg(format="provisioning hidden service for %(name)s",
                     name=name, facility=FACILITY)
        try:
            if name not in by_name:
                yield maybeDeferred(self._controller.create_service, name,
                                    self.ports)
                yield maybeDeferred(self._controller.save_config)
            by_name = yield self.refresh()
        except Exception:
            log.err(None, "hidden service creation failed", parent=lp,
                    facility=FACILITY, level=log.UNUSUAL)
            raise ProvisioningFailed(name)
        hostname = by_name.get(name)
        if not hostname:
            log.msg("controller lists no hostname for the new service",
                    parent=lp, facility=FACILITY, level=log.UNUSUAL)
            raise ProvisioningFailed(name, "no onion hostname")
        log.msg(format="%(name)s is at %(host)s", name=name, host=hostname,
                parent=lp, facility=FACILITY)
        return hostname

    @inlineCallbacks
    def identifier_for(self, onion_address):
        """Fire with the ContentIdentifier served at 'onion_address', or
        None when the address is not one of ours. Errbacks with
        DirectoryError only when the controller itself fails."""
        hostname = normalize(onion_address)
        if not is_onion_hostname(hostname):
            return None
        # "www.<name>.onion" reaches the same service
        hostname = ".".join(hostname.split(".")[-2:])
        try:
            yield self.refresh()
        except Exception:
            log.err(None, "unable to query the Tor controller",
                    facility=FACILITY, level=log.UNUSUAL)
            raise DirectoryError(hostname)
        name = self._by_host.get(hostname)
        if name is None:
            return None
        try:
            return ContentIdentifier.immutable(name)
        except ValueError:
            # a service somebody else configured on the same Tor
            return None
