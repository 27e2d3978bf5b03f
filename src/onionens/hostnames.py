# -*- test-case-name: onionens.test.test_hostnames -*-

from onionens.errors import BadHostname

ROOT = "root"
FIRST_LEVEL = "first-level"
DEEPER = "deeper"
FOREIGN = "foreign"


def normalize(hostname):
    """Lowercase, drop any ':port' suffix and a trailing dot."""
    if isinstance(hostname, bytes):
        hostname = hostname.decode("idna")
    hostname = hostname.strip().lower()
    if hostname.startswith("["):
        return hostname # IPv6 literal, never one of ours
    hostname = hostname.split(":", 1)[0]
    return hostname.rstrip(".")


def classify(hostname, domain):
    """Place 'hostname' relative to the gateway's managed domain: the domain
    itself (ROOT), one label below it (FIRST_LEVEL), further below
    (DEEPER), or outside of it (FOREIGN)."""
    hostname = normalize(hostname)
    domain = normalize(domain)
    if hostname == domain:
        return ROOT
    if not hostname.endswith("." + domain):
        return FOREIGN
    sub = hostname[:-len(domain)-1]
    if not sub or "" in sub.split("."):
        return FOREIGN
    if "." in sub:
        return DEEPER
    return FIRST_LEVEL


def wildcard_for(hostname):
    """Return the wildcard pattern covering 'hostname' ('a.b.c' ->
    '*.b.c'), or None if there is no parent to wildcard."""
    hostname = normalize(hostname)
    if "." not in hostname:
        return None
    return "*." + hostname.split(".", 1)[1]


class ParsedHost:
    def __init__(self, hostname, label, onion_mode):
        self.hostname = hostname
        self.label = label
        self.onion_mode = onion_mode

    def __repr__(self):
        return "<ParsedHost %s -> %s%s>" % (self.hostname, self.label,
                                            " (onion)" if self.onion_mode
                                            else "")


def parse_host(hostname, domain, onion_marker="onion", tld="eth"):
    """Recover the naming-system label from a clearnet Host: header.

    'example.3th.ws' becomes 'example.eth'. A leading onion marker segment
    ('onion.example.3th.ws') is stripped and flags the request as wanting
    a redirect to the content's hidden service."""
    hostname = normalize(hostname)
    if classify(hostname, domain) in (ROOT, FOREIGN):
        raise BadHostname(hostname)
    rest = hostname[:-len(normalize(domain))-1]
    onion_mode = False
    marker = onion_marker + "."
    if onion_marker and rest.startswith(marker):
        onion_mode = True
        rest = rest[len(marker):]
    if not rest:
        raise BadHostname(hostname)
    return ParsedHost(hostname, "%s.%s" % (rest, tld), onion_mode)
