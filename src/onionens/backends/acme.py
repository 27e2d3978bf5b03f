# -*- test-case-name: onionens.test.test_backends -*-

import os
from zope.interface import implementer
from twisted.internet.utils import getProcessOutputAndValue

from onionens.interfaces import ICertificateAuthority
from onionens.errors import IssuanceFailed


@implementer(ICertificateAuthority)
class CertbotAuthority:
    """Issues certificates by running certbot with the http-01 webroot
    challenge, and reads the results out of certbot's 'live' directory.
    The gateway's plain HTTP listener serves the webroot's
    .well-known/acme-challenge/ tree so the authority can reach it."""

    def __init__(self, config_dir, webroot, email=None, staging=True,
                 certbot="certbot", reactor=None):
        self.config_dir = config_dir
        self.webroot = webroot
        self.email = email
        self.staging = staging
        self.certbot = certbot
        self._reactor = reactor

    def live_dir(self, hostname):
        return os.path.join(self.config_dir, "live", hostname)

    def certbot_args(self, hostname, alt_names, challenge):
        webroot = challenge.get("webroot", self.webroot)
        args = ["certonly", "--non-interactive", "--agree-tos",
                "--webroot", "-w", webroot,
                "--config-dir", self.config_dir,
                "--work-dir", os.path.join(self.config_dir, "work"),
                "--logs-dir", os.path.join(self.config_dir, "logs"),
                "--cert-name", hostname,
                "-d", hostname]
        for name in alt_names:
            if name != hostname:
                args.extend(["-d", name])
        if self.email:
            args.extend(["--email", self.email])
        else:
            args.append("--register-unsafely-without-email")
        if challenge.get("staging", self.staging):
            args.append("--staging")
        return args

    def issue(self, hostname, alt_names, challenge):
        args = self.certbot_args(hostname, alt_names, challenge)
        d = getProcessOutputAndValue(self.certbot, args, env=dict(os.environ),
                                     reactor=self._reactor)
        def _check(res):
            out, err, code = res
            if code != 0:
                raise IssuanceFailed(hostname, "certbot exited %d: %s"
                                     % (code, err.decode("utf-8", "replace")
                                        .strip()[-200:]))
        d.addCallback(_check)
        return d

    def get(self, hostname):
        live = self.live_dir(hostname)
        key_path = os.path.join(live, "privkey.pem")
        chain_path = os.path.join(live, "fullchain.pem")
        if not (os.path.exists(key_path) and os.path.exists(chain_path)):
            return None
        with open(key_path, "rb") as f:
            key_pem = f.read()
        with open(chain_path, "rb") as f:
            chain_pem = f.read()
        return (key_pem, chain_pem)
