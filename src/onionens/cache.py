# -*- test-case-name: onionens.test.test_cache -*-

import os, tarfile, tempfile
from twisted.internet.defer import inlineCallbacks, maybeDeferred, succeed
from twisted.internet.threads import deferToThread
from foolscap.logging import log

from onionens.errors import FetchFailed, ExtractionFailed, NoStaticContent
from onionens.ident import canonical_cid
from onionens.util import SingleFlight, move_into_place, remove_path

FACILITY = "onionens/cache"

# entry states
ABSENT = "absent"
FETCHING = "fetching"
READY = "ready"
INVALID = "invalid"
FETCH_FAILED = "fetch-failed"

# shapes of a READY entry
DIRECTORY = "directory"
SINGLE_FILE = "single-file"

STAGING_PREFIX = ".staging-"


class CacheEntry:
    def __init__(self, cid, state, form=None, path=None, entry_point=None,
                 pinned=False):
        self.cid = cid
        self.state = state
        self.form = form
        self.path = path # the directory, or the single file
        self.entry_point = entry_point
        self.pinned = pinned

    def is_ready(self):
        return self.state == READY

    def __repr__(self):
        return "<CacheEntry %s %s %s>" % (self.cid, self.state,
                                          self.form or "")


class ContentCache:
    """The on-disk content cache.

    Each identifier lives either at ROOT/<cid>/ (with an index.<suffix>
    entry point) or at ROOT/<cid>.<suffix> (a single rendered file).
    Payloads are unpacked in a private staging directory and only moved
    into place once they hold an entry point, so readers never see a
    half-populated entry and need no locking. Writers are serialized per
    identifier by a SingleFlight."""

    def __init__(self, root, storage, entry_suffix="html"):
        self.root = os.path.abspath(os.path.expanduser(root))
        self.entry_suffix = entry_suffix
        self._storage = storage
        self._states = {} # k: cid, v: CacheEntry, for non-READY outcomes
        self._flight = SingleFlight()
        if not os.path.isdir(self.root):
            os.makedirs(self.root)
        self._clean_staging()

    def _clean_staging(self):
        # leftovers from a process that died mid-fetch
        for name in os.listdir(self.root):
            if name.startswith(STAGING_PREFIX) or name.endswith(".tar"):
                remove_path(os.path.join(self.root, name))

    @property
    def entry_name(self):
        return "index." + self.entry_suffix

    def directory_path(self, cid):
        return os.path.join(self.root, cid)

    def file_path(self, cid):
        return os.path.join(self.root, "%s.%s" % (cid, self.entry_suffix))

    def archive_path(self, cid):
        return os.path.join(self.root, cid + ".tar")

    def lookup(self, ident):
        """Return the READY CacheEntry for 'ident' if one is on disk,
        preferring the directory form, else None."""
        cid = str(ident)
        dirpath = self.directory_path(cid)
        index = os.path.join(dirpath, self.entry_name)
        if os.path.isfile(index):
            return CacheEntry(cid, READY, DIRECTORY, dirpath, index,
                              pinned=self._was_pinned(cid))
        filepath = self.file_path(cid)
        if os.path.isfile(filepath):
            return CacheEntry(cid, READY, SINGLE_FILE, filepath, filepath,
                              pinned=self._was_pinned(cid))
        return None

    def _was_pinned(self, cid):
        e = self._states.get(cid)
        return bool(e and e.pinned)

    def state(self, ident):
        cid = str(ident)
        if self.lookup(cid):
            return READY
        if self._flight.in_flight(cid):
            return FETCHING
        e = self._states.get(cid)
        if e:
            return e.state
        return ABSENT

    def ensure_cached(self, ident):
        """Fire with a READY CacheEntry for 'ident', fetching, unpacking
        and pinning it first if needed. Errbacks with FetchFailed,
        ExtractionFailed or NoStaticContent. Concurrent callers for the
        same identifier share a single fetch."""
        cid = str(ident)
        entry = self.lookup(cid)
        if entry:
            log.msg(format="cache hit %(cid)s", cid=cid, facility=FACILITY,
                    level=log.NOISY)
            return succeed(entry)
        return self._flight.run(cid, self._populate, cid)

    @inlineCallbacks
    def _populate(self, cid):
        entry = self.lookup(cid)
        if entry:
            return entry
        lp = log.msg(format="fetching %(cid)s", cid=cid, facility=FACILITY)
        self._states[cid] = CacheEntry(cid, FETCHING)
        try:
            data = yield maybeDeferred(self._storage.fetch, cid)
        except Exception:
            log.err(None, "fetch failed", parent=lp, facility=FACILITY,
                    level=log.UNUSUAL)
            yield self._fail(cid, FETCH_FAILED)
            raise FetchFailed(cid)
        if not data:
            log.msg("storage backend returned an empty payload", parent=lp,
                    facility=FACILITY, level=log.UNUSUAL)
            yield self._fail(cid, FETCH_FAILED)
            raise FetchFailed(cid, "empty payload")

        try:
            # tarfile and the filesystem block, so keep them off the reactor
            has_entry_point = yield deferToThread(self._unpack, cid, data)
        except (tarfile.TarError, OSError, ValueError):
            log.err(None, "unable to unpack payload", parent=lp,
                    facility=FACILITY, level=log.UNUSUAL)
            yield self._fail(cid, INVALID)
            raise ExtractionFailed(cid)
        if not has_entry_point:
            log.msg(format="%(cid)s has no %(name)s, discarding", cid=cid,
                    name=self.entry_name, parent=lp, facility=FACILITY,
                    level=log.UNUSUAL)
            yield self._fail(cid, INVALID)
            raise NoStaticContent(cid)

        entry = self.lookup(cid)
        entry.pinned = yield self._retain(cid, lp)
        self._states[cid] = entry
        log.msg(format="%(cid)s ready (%(form)s)", cid=cid, form=entry.form,
                parent=lp, facility=FACILITY)
        return entry

    def _unpack(self, cid, data):
        """Write the archive, unpack it into staging, and move the result
        into place. Returns False (leaving nothing behind) when the payload
        has no entry point."""
        archive = self.archive_path(cid)
        staging = tempfile.mkdtemp(prefix=STAGING_PREFIX + cid + "-",
                                   dir=self.root)
        try:
            with open(archive, "wb") as f:
                f.write(data)
            with tarfile.open(archive) as tf:
                members = checked_members(tf)
                if hasattr(tarfile, "data_filter"):
                    tf.extractall(staging, members=members, filter="data")
                else:
                    tf.extractall(staging, members=members)
            return self._settle(cid, staging)
        finally:
            remove_path(archive)
            remove_path(staging)

    def _settle(self, cid, staging):
        names = os.listdir(staging)
        if not names:
            return False
        if len(names) == 1:
            top = os.path.join(staging, names[0])
            if os.path.isfile(top):
                # a single file: give it the entry suffix
                self._teardown(cid)
                move_into_place(top, self.file_path(cid))
                return True
            source = top
        else:
            # an archive without a wrapping directory
            source = staging
        if not os.path.isfile(os.path.join(source, self.entry_name)):
            return False
        self._teardown(cid)
        os.rename(source, self.directory_path(cid))
        return True

    def _teardown(self, cid):
        remove_path(self.directory_path(cid))
        remove_path(self.file_path(cid))
        remove_path(self.archive_path(cid))

    @inlineCallbacks
    def _fail(self, cid, state):
        self._teardown(cid)
        self._states[cid] = CacheEntry(cid, state)
        yield self._release(cid)

    @inlineCallbacks
    def _retain(self, cid, lp=None):
        try:
            pinned = yield maybeDeferred(self._storage.list_pinned)
        except Exception:
            log.err(None, "unable to list pins", parent=lp,
                    facility=FACILITY, level=log.UNUSUAL)
            pinned = []
        if cid in pinned:
            return True
        try:
            yield maybeDeferred(self._storage.pin, cid)
        except Exception:
            log.err(None, "pin failed", parent=lp, facility=FACILITY,
                    level=log.UNUSUAL)
            return False
        return True

    @inlineCallbacks
    def _release(self, cid):
        # best-effort: the caller cannot do anything about a failed unpin
        try:
            yield maybeDeferred(self._storage.unpin, cid)
        except Exception:
            log.err(None, format="unpin of %(cid)s failed", cid=cid,
                    facility=FACILITY, level=log.UNUSUAL)

    def evict(self, ident):
        """Delete the on-disk entry for 'ident' and release its pin. The
        next ensure_cached() fetches it again."""
        cid = str(ident)
        log.msg(format="evicting %(cid)s", cid=cid, facility=FACILITY)
        self._teardown(cid)
        self._states.pop(cid, None)
        return self._release(cid)

    def cached_identifiers(self):
        """List the identifiers currently READY on disk."""
        found = set()
        for name in os.listdir(self.root):
            if name.startswith(STAGING_PREFIX):
                continue
            cid = name
            if name.endswith("." + self.entry_suffix):
                cid = name[:-len(self.entry_suffix)-1]
            try:
                cid = canonical_cid(cid)
            except ValueError:
                continue
            if self.lookup(cid):
                found.add(cid)
        return sorted(found)


def checked_members(tf):
    """Yield the archive's members, refusing absolute paths, parent
    references and anything that is not a plain file or directory."""
    for m in tf.getmembers():
        name = m.name.replace("\\", "/")
        if name.startswith("/") or ".." in name.split("/"):
            raise tarfile.TarError("unsafe member name %r" % m.name)
        if not (m.isfile() or m.isdir()):
            continue
        yield m
