# -*- test-case-name: onionens.test.test_resolver -*-

from twisted.internet.defer import inlineCallbacks, maybeDeferred
from foolscap.logging import log

from onionens.ident import (ContentIdentifier, IMMUTABLE_CODECS,
                            MUTABLE_CODECS)
from onionens.errors import NameNotFound, UnsupportedContent, \
     BackendUnavailable

FACILITY = "onionens/resolver"


def target_from_segments(segments):
    """Pick the immutable hash out of a pointer resolution. The storage
    daemon may answer with several hops; the last segment carries the
    final '/ipfs/<hash>' path."""
    segments = [s for s in (segments or []) if s]
    if not segments:
        return None
    last = segments[-1]
    if isinstance(last, bytes):
        last = last.decode("ascii")
    if "/ipfs/" not in last:
        return None
    target = last.split("/ipfs/", 1)[1]
    return target.split("/", 1)[0] or None


class NameResolver:
    """Turn a naming-system label ('example.eth') into a ContentIdentifier.

    Nothing is cached here: a mutable pointer can move between requests,
    so every call goes back to the backends. Failures are not retried."""

    def __init__(self, naming, storage):
        self._naming = naming
        self._storage = storage

    @inlineCallbacks
    def resolve(self, label):
        lp = log.msg(format="resolving %(label)s", label=label,
                     facility=FACILITY, level=log.NOISY)
        try:
            record = yield maybeDeferred(self._naming.get_content_record,
                                         label)
        except Exception:
            log.err(None, "naming backend failed", parent=lp,
                    facility=FACILITY, level=log.UNUSUAL)
            raise BackendUnavailable(label)

        if record is None or not record.decoded:
            log.msg("no content record", parent=lp, facility=FACILITY,
                    level=log.NOISY)
            raise NameNotFound(label)

        if record.codec in IMMUTABLE_CODECS:
            try:
                ident = ContentIdentifier.immutable(record.decoded)
            except ValueError:
                raise UnsupportedContent(label, record.codec)
            log.msg(format="%(label)s -> %(cid)s", label=label,
                    cid=ident.cid, parent=lp, facility=FACILITY)
            return ident

        if record.codec not in MUTABLE_CODECS:
            raise UnsupportedContent(label, record.codec)

        pointer = record.decoded
        try:
            segments = yield maybeDeferred(self._storage.resolve_name,
                                           pointer)
        except Exception:
            log.err(None, "pointer resolution failed", parent=lp,
                    facility=FACILITY, level=log.UNUSUAL)
            raise BackendUnavailable(label, pointer)
        target = target_from_segments(segments)
        if target is None:
            raise UnsupportedContent(label, pointer)
        try:
            ident = ContentIdentifier.mutable(target, pointer)
        except ValueError:
            raise UnsupportedContent(label, pointer)
        log.msg(format="%(label)s -> %(pointer)s -> %(cid)s", label=label,
                pointer=pointer, cid=ident.cid, parent=lp,
                facility=FACILITY)
        return ident
