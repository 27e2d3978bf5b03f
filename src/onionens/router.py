# -*- test-case-name: onionens.test.test_router -*-

import os
from twisted.internet.defer import inlineCallbacks, fail
from twisted.web import resource, server, static
from foolscap.logging import log

from onionens import messages
from onionens.cache import DIRECTORY
from onionens.errors import GatewayError, ServiceNotFound
from onionens.hostnames import normalize, parse_host

FACILITY = "onionens/router"
CHALLENGE_PATH = [b".well-known", b"acme-challenge"]


class Redirect:
    def __init__(self, location, code=301):
        self.location = location
        self.code = code

    def __repr__(self):
        return "<Redirect %d %s>" % (self.code, self.location)


class Router:
    """The request pipeline shared by both listeners.

    handle_clearnet() and handle_onion() fire with either a READY
    CacheEntry to serve or a Redirect, and errback with a GatewayError
    subclass describing what the client should be told."""

    def __init__(self, resolver, cache, directory, domain,
                 onion_marker="onion", naming_tld="eth"):
        self.resolver = resolver
        self.cache = cache
        self.directory = directory
        self.domain = normalize(domain)
        self.onion_marker = onion_marker
        self.naming_tld = naming_tld

    @inlineCallbacks
    def handle_clearnet(self, hostname):
        parsed = parse_host(hostname, self.domain, self.onion_marker,
                            self.naming_tld)
        ident = yield self.resolver.resolve(parsed.label)
        entry = yield self.cache.ensure_cached(ident)
        if not parsed.onion_mode:
            return entry
        onion = yield self.directory.address_for(ident)
        log.msg(format="redirecting %(host)s to %(onion)s",
                host=parsed.hostname, onion=onion, facility=FACILITY,
                level=log.NOISY)
        return Redirect("http://%s/" % onion)

    @inlineCallbacks
    def handle_onion(self, hostname):
        hostname = normalize(hostname)
        ident = yield self.directory.identifier_for(hostname)
        if ident is None:
            raise ServiceNotFound(hostname)
        # normally a cache hit; refetches if the entry was evicted
        entry = yield self.cache.ensure_cached(ident)
        return entry


def request_hostname(request):
    host = request.getHeader(b"host")
    if host is None:
        host = request.getRequestHostname()
    if isinstance(host, bytes):
        host = host.decode("idna")
    return normalize(host)


def static_resource_for(entry, request):
    """Return the twisted.web resource serving 'request' out of 'entry',
    consuming the request's remaining path."""
    if entry.form == DIRECTORY:
        root = static.File(entry.path)
        # index.<entry suffix> only; createSimilarFile copies this downwards
        root.indexNames = [os.path.basename(entry.entry_point)]
        return resource.getChildForRequest(root, request)
    if request.postpath and request.postpath != [b""]:
        return resource.NoResource()
    request.postpath = []
    return static.File(entry.path)


class _GatewayResource(resource.Resource):
    isLeaf = True

    def __init__(self, router):
        resource.Resource.__init__(self)
        self.router = router

    def handle(self, hostname):
        raise NotImplementedError

    def render_GET(self, request):
        request.setHeader(b"access-control-allow-origin", b"*")
        gone = []
        request.notifyFinish().addErrback(gone.append)
        try:
            hostname = request_hostname(request)
            d = self.handle(hostname)
        except Exception:
            d = fail()
        d.addCallbacks(self._respond, self._failed,
                       callbackArgs=(request, gone),
                       errbackArgs=(request, gone))
        d.addErrback(log.err, "error while writing a response",
                     facility=FACILITY, level=log.WEIRD)
        return server.NOT_DONE_YET

    def _respond(self, result, request, gone):
        if gone:
            # the shared fetch has finished anyway, nobody to tell
            return
        if isinstance(result, Redirect):
            request.setResponseCode(result.code)
            request.setHeader(b"location", result.location.encode("ascii"))
            self._write_text(request, result.location)
            return
        child = static_resource_for(result, request)
        body = child.render(request)
        if body is not server.NOT_DONE_YET:
            request.write(body)
            request.finish()

    def _failed(self, f, request, gone):
        if f.check(GatewayError):
            code, message = f.value.code, f.value.message
            log.msg(format="%(why)s", why=str(f.value), facility=FACILITY,
                    level=log.NOISY)
        else:
            code, message = 500, messages.ERR_RESOLVE_CONFLICT
            log.err(f, "unexpected failure while handling a request",
                    facility=FACILITY, level=log.WEIRD)
        if gone:
            return
        request.setResponseCode(code)
        self._write_text(request, message)

    def _write_text(self, request, text):
        request.setHeader(b"content-type", b"text/plain; charset=utf-8")
        request.write(text.encode("utf-8") + b"\n")
        request.finish()


class ClearnetResource(_GatewayResource):
    """Catch-all resource for the public listener, keyed by Host:. If
    'challenge_root' is set, ACME http-01 challenge files under it are
    answered directly, for every hostname."""

    def __init__(self, router, challenge_root=None):
        _GatewayResource.__init__(self, router)
        self.challenge_root = challenge_root

    def render_GET(self, request):
        if self.challenge_root and request.postpath[:2] == CHALLENGE_PATH:
            child = resource.getChildForRequest(
                static.File(self.challenge_root), request)
            return child.render(request)
        return _GatewayResource.render_GET(self, request)

    def handle(self, hostname):
        return self.router.handle_clearnet(hostname)


class OnionResource(_GatewayResource):
    """Catch-all resource for the listener the hidden services forward
    to. The Host: header is the onion address the client dialed."""

    def handle(self, hostname):
        return self.router.handle_onion(hostname)
