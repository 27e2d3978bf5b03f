from zope.interface import interface
Interface = interface.Interface

# The gateway core talks to four external collaborators. Each method
# returns a Deferred (or a plain value, which callers wrap with
# maybeDeferred). Concrete adapters live in onionens.backends, and the
# test suite supplies in-memory fakes.

class INamingBackend(Interface):
    def get_content_record(label):
        """Look up the content-hash record registered for 'label' (a full
        naming-system name like 'example.eth'). Fire with a ContentRecord,
        or with None when no record exists. Errback on any RPC failure."""

class IStorageBackend(Interface):
    def fetch(cid):
        """Fire with the full payload for 'cid' as bytes, in the tar
        archive form the storage daemon's 'get' call produces. An empty
        result means nothing could be retrieved."""

    def pin(cid):
        """Ask the daemon to retain 'cid' against garbage collection."""

    def unpin(cid):
        """Release a previous pin on 'cid'."""

    def list_pinned():
        """Fire with a list of canonical identifier strings currently
        pinned."""

    def resolve_name(name):
        """Resolve a mutable naming pointer. Fire with a list of path
        segments; the last one has the form '/ipfs/<hash>'."""

class IOnionController(Interface):
    def list_services():
        """Fire with a list of (name, onion_hostname) pairs, one per hidden
        service the controller knows about. onion_hostname may be None if
        the service has not published its hostname yet."""

    def create_service(name, ports):
        """Register a new hidden service called 'name' forwarding the
        given list of 'PUBLIC_PORT HOST:PORT' strings."""

    def reload_config():
        """Re-read the controller's state, picking up changes made
        out-of-band."""

    def save_config():
        """Persist the controller's current service table."""

class ICertificateAuthority(Interface):
    def issue(hostname, alt_names, challenge):
        """Obtain a certificate for 'hostname' (plus 'alt_names'), using the
        challenge configuration dict 'challenge'. Fire with None once the
        key material is available through get()."""

    def get(hostname):
        """Fire with (key_pem, cert_pem) bytes for 'hostname', or None if
        no certificate is stored for it. cert_pem may hold a full chain."""
