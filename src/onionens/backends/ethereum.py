# -*- test-case-name: onionens.test.test_backends -*-

import content_hash
from zope.interface import implementer
from twisted.internet.threads import deferToThread

from onionens.interfaces import INamingBackend
from onionens.ident import ContentRecord

UNKNOWN_CODEC = "unknown"


def decode_record(raw):
    """Turn the raw bytes of an ENS contenthash record into a
    ContentRecord, or None for an empty record."""
    if not raw:
        return None
    chash = bytes(raw).hex()
    try:
        codec = content_hash.get_codec(chash)
        decoded = content_hash.decode(chash)
    except (KeyError, ValueError, TypeError):
        return ContentRecord(UNKNOWN_CODEC, chash)
    return ContentRecord(codec, decoded)


@implementer(INamingBackend)
class ENSNamingBackend:
    """Reads ENS contenthash records through a web3 JSON-RPC provider.

    web3 is synchronous, so every lookup runs in the reactor's
    threadpool."""

    def __init__(self, rpc_provider=None, w3=None):
        if w3 is None:
            from web3 import Web3
            w3 = Web3(Web3.HTTPProvider(rpc_provider))
        self._w3 = w3

    def get_content_record(self, label):
        return deferToThread(self._get_content_record, label)

    def _get_content_record(self, label):
        ns = self._w3.ens
        resolver = ns.resolver(label)
        if resolver is None:
            return None
        raw = resolver.caller.contenthash(ns.namehash(label))
        return decode_record(raw)
