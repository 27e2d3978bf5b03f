# -*- test-case-name: onionens.test.test_config -*-

import os, json

from onionens.errors import UnknownVersion
from onionens.util import move_into_place

CONFIG_FILE = "gateway.json"

DEFAULTS = {
    "rpc_provider": "https://api.securerpc.com/v1",
    "ipfs_api": "http://127.0.0.1:5001",
    "tor_binary": "/usr/local/bin/tor",
    "tor_control": None, # None means launch our own Tor
    "clearnet_port": 443,
    "clearnet_interface": "",
    "http_port": None, # plain HTTP, also answers ACME http-01 challenges
    "onion_port": 3000,
    "domain": "3th.ws",
    "onion_marker": "onion",
    "naming_tld": "eth",
    "entry_suffix": "html",
    "cache_dir": "cache",
    "ssl_cert": "/etc/letsencrypt/live/3th.ws/fullchain.pem",
    "ssl_key": "/etc/letsencrypt/live/3th.ws/privkey.pem",
    "acme_email": None,
    "acme_webroot": "/var/www",
    "acme_config_dir": "/etc/letsencrypt",
    "acme_staging": True,
    "issuance_timeout": 60,
    "issuance_retry": 300, # seconds before a failed issuance is retried
    }

PATH_KEYS = ["cache_dir", "ssl_cert", "ssl_key", "acme_webroot",
             "acme_config_dir"]
INT_KEYS = ["clearnet_port", "http_port", "onion_port", "issuance_timeout",
            "issuance_retry"]


class GatewayConfig:
    """Settings for one gateway, stored as BASEDIR/gateway.json. Keys not
    present in the file take their values from DEFAULTS."""

    def __init__(self, basedir, **kwargs):
        self.basedir = os.path.abspath(basedir)
        unknown = set(kwargs) - set(DEFAULTS)
        if unknown:
            raise ValueError("unknown config keys: %s"
                             % ", ".join(sorted(unknown)))
        self._values = dict(DEFAULTS)
        self._values.update(kwargs)
        for key in INT_KEYS:
            if self._values[key] is not None:
                self._values[key] = int(self._values[key])

    def __getitem__(self, key):
        return self._values[key]

    def __setitem__(self, key, value):
        if key not in DEFAULTS:
            raise KeyError(key)
        if key in INT_KEYS and value is not None:
            value = int(value)
        self._values[key] = value

    def items(self):
        return sorted(self._values.items())

    def path(self, key):
        """Return the setting 'key' as an absolute path, resolving relative
        ones against the base directory."""
        assert key in PATH_KEYS, key
        value = self._values[key]
        return os.path.join(self.basedir, os.path.expanduser(value))

    @property
    def config_file(self):
        return os.path.join(self.basedir, CONFIG_FILE)

    @classmethod
    def load(cls, basedir):
        config_file = os.path.join(basedir, CONFIG_FILE)
        with open(config_file, "r") as f:
            data = json.load(f)
        if data.get("version") != 1:
            raise UnknownVersion("unable to handle version %r"
                                 % (data.get("version"),))
        return cls(basedir, **data["gateway"])

    def save(self):
        data = {"version": 1, "gateway": dict(self._values)}
        tmpfile = self.config_file + ".tmp"
        with open(tmpfile, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        move_into_place(tmpfile, self.config_file)
