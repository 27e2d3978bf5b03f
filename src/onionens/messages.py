# user-visible strings. Every failure path in the router renders one of
# these as a plain-text body.

SERVER_INIT = "onionens: gateway is up, serving clearnet and onion listeners"
SERVER_FAIL = "onionens: gateway failed to start"

ERR_NAME_NOT_FOUND = "No content record is registered for this name."
ERR_UNSUPPORTED_TYPE = ("This name points at a content type the gateway"
                        " cannot serve (only IPFS and IPNS are supported).")
ERR_BACKEND_UNAVAILABLE = ("The naming backend could not be reached,"
                           " please try again later.")
ERR_FETCH_FAILED = ("The content for this name could not be fetched from"
                    " the storage network.")
ERR_EXTRACTION_FAILED = "The content for this name could not be unpacked."
ERR_NO_STATIC_CONTENT = ("The content for this name was fetched but holds"
                         " no servable entry point (index.html).")
ERR_NO_ONION_SERVICE = "No onion route is available for this name."
ERR_REVERSE_ONION = "This onion address is not mapped to any content."
ERR_RESOLVE_CONFLICT = "The gateway hit an internal error resolving this name."
ERR_BAD_HOST = "This hostname is not served by this gateway."
