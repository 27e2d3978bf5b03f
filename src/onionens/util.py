# -*- test-case-name: onionens.test.test_util -*-

import os, shutil
from twisted.internet import defer
from twisted.python import failure


class SingleFlight:
    """Collapse concurrent calls for the same key into one.

    The first caller for a key starts the work; everyone who arrives while
    it is running gets a Deferred that fires with the same result (or the
    same Failure). Once the work finishes the key is forgotten, so the next
    call starts fresh. The shared work is never cancelled on behalf of a
    single waiter: cancelling a waiter's Deferred only detaches that
    waiter."""

    def __init__(self):
        self._waiters = {} # k: key, v: list of Deferreds

    def in_flight(self, key):
        return key in self._waiters

    def run(self, key, f, *args, **kwargs):
        d = defer.Deferred(lambda d: self._detach(key, d))
        if key in self._waiters:
            self._waiters[key].append(d)
            return d
        self._waiters[key] = [d]
        work = defer.maybeDeferred(f, *args, **kwargs)
        work.addBoth(self._fire, key)
        return d

    def _detach(self, key, d):
        waiters = self._waiters.get(key, [])
        if d in waiters:
            waiters.remove(d)

    def _fire(self, result, key):
        waiters = self._waiters.pop(key)
        for d in waiters:
            d.callback(result)
        if isinstance(result, failure.Failure):
            # handed to the waiters above
            return None
        return result


def move_into_place(source, dest):
    """Atomically replace 'dest' with 'source'."""
    os.replace(source, dest)


def remove_path(path):
    """Delete a file or a whole directory tree, if it exists."""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)
