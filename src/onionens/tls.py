# -*- test-case-name: onionens.test.test_tls -*-

import re, datetime
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from twisted.internet import defer
from twisted.internet.defer import inlineCallbacks, maybeDeferred
from twisted.internet.ssl import CertificateOptions, Certificate, \
     PrivateCertificate
from foolscap.logging import log

from onionens.errors import IssuanceFailed
from onionens.hostnames import normalize, classify, wildcard_for, \
     FIRST_LEVEL, DEEPER
from onionens.util import SingleFlight

FACILITY = "onionens/tls"

PEM_CERT_RE = re.compile(b"-----BEGIN CERTIFICATE-----.+?"
                         b"-----END CERTIFICATE-----", re.S)


def options_from_pem(key_pem, cert_pem):
    """Build CertificateOptions from a PEM private key and a PEM
    certificate (optionally followed by its chain)."""
    if isinstance(key_pem, str):
        key_pem = key_pem.encode("ascii")
    if isinstance(cert_pem, str):
        cert_pem = cert_pem.encode("ascii")
    blocks = PEM_CERT_RE.findall(cert_pem)
    if not blocks:
        raise ValueError("no certificate found in PEM data")
    leaf = PrivateCertificate.loadPEM(blocks[0] + b"\n" + key_pem)
    chain = [Certificate.loadPEM(b).original for b in blocks[1:]]
    return CertificateOptions(privateKey=leaf.privateKey.original,
                              certificate=leaf.original,
                              extraCertChain=chain)


class TLSContextProvider:
    """Pick the certificate for an incoming TLS handshake.

    Lookup order is the exact hostname, then a wildcard covering its
    parent, then (for names under our domain) a freshly issued
    certificate, then the static default. Issued certificates are kept,
    so each hostname is issued at most once per process. A hostname whose
    issuance failed is not retried for 'retry_after' seconds. context_for()
    never fails: anything that goes wrong yields the default."""

    def __init__(self, domain, default_options, authority=None,
                 challenge=None, timeout=60, retry_after=300, reactor=None):
        if reactor is None:
            from twisted.internet import reactor
        self.domain = normalize(domain)
        self.default_options = default_options
        self.timeout = timeout
        self.retry_after = retry_after
        self._authority = authority
        self._challenge = challenge or {}
        self._reactor = reactor
        self._bindings = {} # k: hostname or '*.parent', v: CertificateOptions
        self._flight = SingleFlight()
        self._failures = {} # k: hostname, v: when its last issuance failed

    def add_binding(self, pattern, options):
        self._bindings[normalize(pattern)] = options

    def has_binding(self, hostname):
        return normalize(hostname) in self._bindings

    def default_context(self):
        return self.default_options.getContext()

    def eligible(self, hostname):
        return classify(hostname, self.domain) in (FIRST_LEVEL, DEEPER)

    def _match(self, hostname):
        options = self._bindings.get(hostname)
        if options is None:
            wildcard = wildcard_for(hostname)
            if wildcard:
                options = self._bindings.get(wildcard)
        return options

    @inlineCallbacks
    def context_for(self, hostname):
        """Fire with an OpenSSL Context for 'hostname'."""
        hostname = normalize(hostname)
        options = self._match(hostname)
        if options is None and self.eligible(hostname) and self._authority:
            try:
                options = yield self._load(hostname)
                if options is None and self._recently_failed(hostname):
                    log.msg(format="issuance for %(host)s failed recently,"
                            " using the default certificate", host=hostname,
                            facility=FACILITY, level=log.NOISY)
                elif options is None:
                    d = self._flight.run(hostname, self._issue, hostname)
                    d.addTimeout(self.timeout, self._reactor)
                    yield d
                    options = self._match(hostname)
            except defer.TimeoutError:
                log.msg(format="issuance for %(host)s is taking longer than"
                        " %(timeout)ss, using the default certificate",
                        host=hostname, timeout=self.timeout,
                        facility=FACILITY, level=log.UNUSUAL)
            except Exception:
                log.err(None, format="no certificate for %(host)s, using the"
                        " default", host=hostname, facility=FACILITY,
                        level=log.UNUSUAL)
        if options is None:
            options = self.default_options
        return options.getContext()

    def handshake_context(self, hostname):
        """Synchronous form of context_for(), for the SNI callback. If the
        answer is not available right away (issuance has to go out to the
        authority), this handshake gets the default certificate while the
        issuance keeps running for the benefit of later handshakes."""
        result = []
        self.context_for(hostname).addCallback(result.append)
        if result:
            return result[0]
        log.msg(format="handshake for %(host)s proceeds with the default"
                " certificate", host=hostname, facility=FACILITY,
                level=log.NOISY)
        return self.default_context()

    def _recently_failed(self, hostname):
        failed_at = self._failures.get(hostname)
        if failed_at is None:
            return False
        if self._reactor.seconds() - failed_at < self.retry_after:
            return True
        del self._failures[hostname]
        return False

    @inlineCallbacks
    def _load(self, hostname):
        material = yield maybeDeferred(self._authority.get, hostname)
        if not material:
            return None
        key_pem, cert_pem = material
        options = options_from_pem(key_pem, cert_pem)
        self._bindings[hostname] = options
        return options

    @inlineCallbacks
    def _issue(self, hostname):
        lp = log.msg(format="requesting a certificate for %(host)s",
                     host=hostname, facility=FACILITY)
        try:
            yield maybeDeferred(self._authority.issue, hostname, [hostname],
                                self._challenge)
            options = yield self._load(hostname)
        except Exception:
            log.err(None, "issuance failed", parent=lp, facility=FACILITY,
                    level=log.UNUSUAL)
            self._failures[hostname] = self._reactor.seconds()
            raise IssuanceFailed(hostname)
        if options is None:
            self._failures[hostname] = self._reactor.seconds()
            raise IssuanceFailed(hostname, "authority stored nothing")
        self._failures.pop(hostname, None)
        log.msg("certificate issued", parent=lp, facility=FACILITY)
        return options


class SNIContextFactory(CertificateOptions):
    """Server context factory that presents the default certificate and
    swaps in a per-hostname context once the client's SNI is known."""

    def __init__(self, provider):
        self._provider = provider
        default = provider.default_options
        CertificateOptions.__init__(self,
                                    privateKey=default.privateKey,
                                    certificate=default.certificate,
                                    extraCertChain=default.extraCertChain)

    def getContext(self):
        ctx = CertificateOptions.getContext(self)
        ctx.set_tlsext_servername_callback(self._select_context)
        return ctx

    def _select_context(self, connection):
        name = connection.get_servername()
        if not name:
            return
        try:
            hostname = name.decode("idna")
        except UnicodeError:
            return
        connection.set_context(self._provider.handshake_context(hostname))


def create_self_signed(common_name):
    """Generate a throwaway key and self-signed certificate for
    'common_name', returned as (key_pem, cert_pem). Used when no default
    pair has been provisioned yet."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=365))
            .sign(key, hashes.SHA256()))
    key_pem = key.private_bytes(serialization.Encoding.PEM,
                                serialization.PrivateFormat.PKCS8,
                                serialization.NoEncryption())
    return (key_pem, cert.public_bytes(serialization.Encoding.PEM))


def load_default_options(key_path, cert_path, common_name):
    """Read the static default pair, falling back to a self-signed one
    (logged as UNUSUAL) when the files are missing."""
    try:
        with open(key_path, "rb") as f:
            key_pem = f.read()
        with open(cert_path, "rb") as f:
            cert_pem = f.read()
    except EnvironmentError:
        log.msg(format="no default certificate at %(path)s, generating a"
                " self-signed one for %(cn)s", path=cert_path,
                cn=common_name, facility=FACILITY, level=log.UNUSUAL)
        key_pem, cert_pem = create_self_signed(common_name)
    return options_from_pem(key_pem, cert_pem)
