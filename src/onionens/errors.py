# -*- test-case-name: onionens.test.test_router -*-

from onionens import messages


class GatewayError(Exception):
    """Base class for everything the gateway can turn into a response.

    'message' is the short user-visible explanation, 'code' the HTTP
    status the router sends with it."""
    message = messages.ERR_RESOLVE_CONFLICT
    code = 500

    def __init__(self, *args, **kwargs):
        Exception.__init__(self, *args)
        self.ident = kwargs.get("ident")

    def __str__(self):
        args = [self.__class__.__name__]
        if self.args:
            args.append(": " + " ".join([str(a) for a in self.args]))
        if self.ident:
            args.append(" (for %s)" % self.ident)
        return "".join(args)


class ResolutionError(GatewayError):
    code = 404

class NameNotFound(ResolutionError):
    """The naming backend holds no content record for the label."""
    message = messages.ERR_NAME_NOT_FOUND
    code = 404

class UnsupportedContent(ResolutionError):
    """The record decodes to neither an immutable hash nor a pointer."""
    message = messages.ERR_UNSUPPORTED_TYPE
    code = 415

class BackendUnavailable(ResolutionError):
    """The naming RPC (or the pointer lookup behind it) failed."""
    message = messages.ERR_BACKEND_UNAVAILABLE
    code = 502


class CacheError(GatewayError):
    code = 502

class FetchFailed(CacheError):
    message = messages.ERR_FETCH_FAILED
    code = 502

class ExtractionFailed(CacheError):
    message = messages.ERR_EXTRACTION_FAILED
    code = 502

class NoStaticContent(CacheError):
    message = messages.ERR_NO_STATIC_CONTENT
    code = 404


class DirectoryError(GatewayError):
    message = messages.ERR_NO_ONION_SERVICE
    code = 503

class ProvisioningFailed(DirectoryError):
    pass

class ServiceNotFound(DirectoryError):
    message = messages.ERR_REVERSE_ONION
    code = 404


class CertificateError(GatewayError):
    pass

class IssuanceFailed(CertificateError):
    pass


class BadHostname(GatewayError):
    """The request's Host: header is not under the gateway's domain."""
    message = messages.ERR_BAD_HOST
    code = 404


# transport-level failures raised by the collaborator adapters. The core
# components translate these into the families above.

class StorageBackendError(Exception):
    """The content-addressed storage daemon refused or failed a call."""

class ControllerError(Exception):
    """The Tor controller refused or failed a call."""


class UnknownVersion(Exception):
    pass
