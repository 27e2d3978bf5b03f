"""onionens: serve ENS-named IPFS content over the web and over Tor"""

__version__ = "0.1.0"
