#!/usr/bin/env python

from setuptools import setup, Command

commands = {}

class Trial(Command):
    description = "run trial"
    user_options = []

    def initialize_options(self):
        pass
    def finalize_options(self):
        pass
    def run(self):
        import sys
        from twisted.scripts import trial
        sys.argv = ["trial", "--rterrors", "onionens.test"]
        trial.run()  # does not return
commands["trial"] = Trial
commands["test"] = Trial

trove_classifiers = [
    "Development Status :: 3 - Alpha",
    "Operating System :: POSIX",
    "Framework :: Twisted",
    "Programming Language :: Python",
    "Programming Language :: Python :: 3.8",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: Implementation :: CPython",
    "Topic :: Internet",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
    ]

setup_args = {
    "name": "onion-ens-resolver",
    "version": "0.1.0",
    "description": "An ENS/IPFS gateway for clearnet HTTPS and Tor onion"
                   " services.",
    "long_description": """\
onionens serves websites published on IPFS under ENS names. A request for
example.3th.ws looks up the contenthash record of example.eth, fetches and
pins the content, and serves it over HTTPS with a certificate issued for
that hostname on demand. Every served identifier can also be reached as a
Tor hidden service: onion.example.3th.ws redirects to its onion address.
""",
    "classifiers": trove_classifiers,
    "platforms": ["any"],

    "package_dir": {"": "src"},
    "packages": ["onionens", "onionens.backends", "onionens.test"],
    "entry_points": {"console_scripts": [
        "onionens = onionens.cli:run_onionens",
        ] },
    "cmdclass": commands,
    "install_requires": ["twisted[tls] >= 16.0.0",
                         "pyOpenSSL",
                         "cryptography",
                         "zope.interface",
                         "foolscap >= 21.7.0",
                         "txtorcon >= 19.0.0",
                         "web3",
                         "content-hash",
                         "py-cid",
                         "py-multihash",
                         ],
    "extras_require": {
        "test": ["mock"],
        "dev": ["mock"],
        },
    "python_requires": ">=3.8",
}

setup_args.update(
    include_package_data=True,
)

if __name__ == "__main__":
    setup(**setup_args)
