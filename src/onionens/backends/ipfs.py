# -*- test-case-name: onionens.test.test_backends -*-

import json
from urllib.parse import urlencode
from zope.interface import implementer
from twisted.internet.defer import inlineCallbacks
from twisted.web.client import Agent, HTTPConnectionPool, readBody
from twisted.web.http_headers import Headers

from onionens.interfaces import IStorageBackend
from onionens.errors import StorageBackendError
from onionens.ident import canonical_cid


@implementer(IStorageBackend)
class IPFSStorageBackend:
    """Talks to an IPFS daemon's HTTP RPC API (the one on port 5001)."""

    def __init__(self, api_url, reactor=None, agent=None):
        if reactor is None:
            from twisted.internet import reactor
        if agent is None:
            agent = Agent(reactor, pool=HTTPConnectionPool(reactor))
        self.api_url = api_url.rstrip("/")
        self._agent = agent

    def url(self, command, **args):
        url = "%s/api/v0/%s" % (self.api_url, command)
        if args:
            url += "?" + urlencode(sorted(args.items()))
        return url.encode("ascii")

    @inlineCallbacks
    def call(self, command, **args):
        # the RPC API only accepts POST
        url = self.url(command, **args)
        try:
            response = yield self._agent.request(b"POST", url, Headers({}),
                                                 None)
            body = yield readBody(response)
        except Exception as e:
            raise StorageBackendError("%s: %r" % (command, e))
        if response.code != 200:
            raise StorageBackendError("%s returned HTTP %d: %s"
                                      % (command, response.code,
                                         body[:200].decode("utf-8",
                                                           "replace")))
        return body

    @inlineCallbacks
    def call_json(self, command, **args):
        body = yield self.call(command, **args)
        try:
            return json.loads(body.decode("utf-8"))
        except ValueError:
            raise StorageBackendError("%s returned malformed JSON" % command)

    def fetch(self, cid):
        return self.call("get", arg=cid, archive="true")

    def pin(self, cid):
        return self.call("pin/add", arg=cid)

    def unpin(self, cid):
        return self.call("pin/rm", arg=cid)

    @inlineCallbacks
    def list_pinned(self):
        data = yield self.call_json("pin/ls", type="recursive")
        pinned = []
        for key in (data.get("Keys") or {}):
            try:
                pinned.append(canonical_cid(key))
            except ValueError:
                pass
        return pinned

    @inlineCallbacks
    def resolve_name(self, name):
        data = yield self.call_json("name/resolve", arg=name,
                                    recursive="true")
        path = data.get("Path")
        if not path:
            return []
        return [path]
