# -*- test-case-name: onionens.test.test_resolver -*-

import multihash
from cid import make_cid

IMMUTABLE = "immutable"
MUTABLE = "mutable"

# codec names as reported by content_hash.get_codec(). Older multicodec
# tables call them "ipfs-ns"/"ipns-ns", current ones plain "ipfs"/"ipns".
IMMUTABLE_CODECS = ("ipfs-ns", "ipfs")
MUTABLE_CODECS = ("ipns-ns", "ipns")


def canonical_cid(value):
    """Return the canonical string form of a content identifier: CIDv1,
    lowercase base32 (the 'bafy...' form). CIDv0 ('Qm...') hashes are
    upgraded, so either spelling of the same payload maps to one cache key.
    Raises ValueError if 'value' is not a CID."""
    if isinstance(value, bytes):
        value = value.decode("ascii")
    value = value.strip()
    if value.startswith("/ipfs/"):
        value = value[len("/ipfs/"):]
    try:
        c = make_cid(value)
        valid = multihash.is_valid(c.multihash)
    except (KeyError, TypeError, ValueError, IndexError):
        valid = False
    if not valid:
        raise ValueError("not a CID: %r" % (value,))
    if c.version == 0:
        c = c.to_v1()
    return c.encode("base32").decode("ascii").lower()


class ContentRecord:
    """What the naming backend hands back: the codec tag and the decoded
    value of a name's content-hash record."""

    def __init__(self, codec, decoded):
        self.codec = codec
        self.decoded = decoded

    @property
    def is_immutable(self):
        return self.codec in IMMUTABLE_CODECS

    def __repr__(self):
        return "<ContentRecord %s %r>" % (self.codec, self.decoded)


class ContentIdentifier:
    """A canonical content identifier, tagged with how it was reached.

    'cid' is always the immutable target. For MUTABLE identifiers,
    'pointer' holds the naming pointer that currently points at it. Two
    identifiers compare equal when their immutable targets do."""

    def __init__(self, cid, kind=IMMUTABLE, pointer=None):
        assert kind in (IMMUTABLE, MUTABLE), kind
        self.cid = canonical_cid(cid)
        self.kind = kind
        self.pointer = pointer

    @classmethod
    def immutable(cls, cid):
        return cls(cid, IMMUTABLE)

    @classmethod
    def mutable(cls, cid, pointer):
        return cls(cid, MUTABLE, pointer)

    def is_mutable(self):
        return self.kind == MUTABLE

    def __str__(self):
        return self.cid

    def __repr__(self):
        if self.pointer:
            return "<ContentIdentifier %s %s via %s>" % (self.kind, self.cid,
                                                         self.pointer)
        return "<ContentIdentifier %s %s>" % (self.kind, self.cid)

    def __eq__(self, other):
        if not isinstance(other, ContentIdentifier):
            return NotImplemented
        return self.cid == other.cid

    def __ne__(self, other):
        if not isinstance(other, ContentIdentifier):
            return NotImplemented
        return self.cid != other.cid

    def __hash__(self):
        return hash(self.cid)
