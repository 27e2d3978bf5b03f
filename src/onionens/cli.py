# -*- test-case-name: onionens.test.test_cli -*-

import os, sys
from io import StringIO
from twisted.python import usage

import onionens
from onionens.config import GatewayConfig, DEFAULTS
from onionens.errors import UnknownVersion


class BaseOptions(usage.Options):
    opt_h = usage.Options.opt_help

    def getSynopsis(self):
        # the default usage.Options.getSynopsis prepends 'onionens'
        return self.synopsis


class CreateOptions(BaseOptions):
    synopsis = "Usage: onionens create [options] BASEDIR"

    optFlags = [
        ("quiet", "q", "Be silent upon success"),
        ("production", None, "Request real certificates instead of using"
         " the ACME staging environment"),
        ]
    optParameters = [
        ("domain", "d", DEFAULTS["domain"], "domain the gateway serves"),
        ("rpc-provider", None, DEFAULTS["rpc_provider"],
         "Ethereum JSON-RPC endpoint used for ENS lookups"),
        ("ipfs-api", None, DEFAULTS["ipfs_api"], "IPFS daemon RPC API URL"),
        ("tor-binary", None, DEFAULTS["tor_binary"],
         "Tor executable to launch"),
        ("tor-control", None, None, "connect to an existing Tor control"
         " port (endpoint string, e.g. tcp:127.0.0.1:9051) instead of"
         " launching one"),
        ("clearnet-port", None, DEFAULTS["clearnet_port"],
         "TLS port for the public listener", int),
        ("http-port", None, None, "optional plain HTTP port (needed for"
         " ACME http-01 challenges)", int),
        ("onion-port", None, DEFAULTS["onion_port"],
         "loopback port hidden services forward to", int),
        ("ssl-cert", None, DEFAULTS["ssl_cert"],
         "default certificate chain (PEM)"),
        ("ssl-key", None, DEFAULTS["ssl_key"], "default private key (PEM)"),
        ("acme-email", None, None, "contact address for the ACME account"),
        ("acme-webroot", None, DEFAULTS["acme_webroot"],
         "directory certbot writes http-01 challenges to"),
        ]

    def parseArgs(self, basedir):
        self.basedir = basedir


def create_gateway(basedir, options):
    os.makedirs(basedir)
    os.chmod(basedir, 0o700)
    config = GatewayConfig(basedir,
                           domain=options["domain"],
                           rpc_provider=options["rpc-provider"],
                           ipfs_api=options["ipfs-api"],
                           tor_binary=options["tor-binary"],
                           tor_control=options["tor-control"],
                           clearnet_port=options["clearnet-port"],
                           http_port=options["http-port"],
                           onion_port=options["onion-port"],
                           ssl_cert=options["ssl-cert"],
                           ssl_key=options["ssl-key"],
                           acme_email=options["acme-email"],
                           acme_webroot=options["acme-webroot"],
                           acme_staging=not options["production"])
    config.save()
    os.makedirs(config.path("cache_dir"))
    return config


class Create:
    def run(self, options):
        basedir = options.basedir
        stdout = options.stdout
        stderr = options.stderr
        if os.path.exists(basedir):
            print("Refusing to touch pre-existing directory %s" % basedir,
                  file=stderr)
            return 1
        config = create_gateway(basedir, options)
        if not options["quiet"]:
            print("Gateway for %s created in %s" % (config["domain"],
                                                    config.basedir),
                  file=stdout)
            print("Now launch it with 'onionens run %s'" % basedir,
                  file=stdout)
        return 0


class ShowOptions(BaseOptions):
    synopsis = "Usage: onionens show BASEDIR"

    def parseArgs(self, basedir):
        self.basedir = basedir


class Show:
    def run(self, options):
        config = GatewayConfig.load(options.basedir)
        for key, value in config.items():
            print("%s: %s" % (key, value), file=options.stdout)
        return 0


class RunOptions(BaseOptions):
    synopsis = "Usage: onionens run [--logfile FILE] BASEDIR"

    optParameters = [
        ("logfile", "l", None, "write the Twisted log here instead of"
         " stdout"),
        ]

    def parseArgs(self, basedir):
        self.basedir = basedir


class Run:
    def run(self, options):
        from twisted.python import log as twisted_log
        from twisted.internet import reactor
        from foolscap.logging import log
        from onionens.server import Gateway

        config = GatewayConfig.load(options.basedir)
        if options["logfile"]:
            twisted_log.startLogging(open(options["logfile"], "a"))
        else:
            twisted_log.startLogging(options.stdout)
        log.bridgeLogsToTwisted()

        gateway = Gateway(config, reactor=reactor)
        reactor.callWhenRunning(gateway.startService)
        reactor.addSystemEventTrigger("before", "shutdown",
                                      gateway.stopService)
        reactor.run()
        return 0


class Options(usage.Options):
    synopsis = "Usage: onionens (create|show|run)"

    subCommands = [
        ("create", None, CreateOptions, "create a new gateway directory"),
        ("show", None, ShowOptions, "print a gateway's configuration"),
        ("run", None, RunOptions, "run a gateway in the foreground"),
        ]

    def postOptions(self):
        if not hasattr(self, 'subOptions'):
            raise usage.UsageError("must specify a command")

    def opt_version(self):
        from twisted import copyright
        print("onionens version:", onionens.__version__)
        print("Twisted version:", copyright.version)
        sys.exit(0)


dispatch_table = {
    "create": Create,
    "show": Show,
    "run": Run,
    }

def dispatch(command, options):
    if command in dispatch_table:
        c = dispatch_table[command]()
        return c.run(options)
    else:
        print("unknown command '%s'" % command)
        raise NotImplementedError

def run_onionens(argv=None, run_by_human=True):
    if argv:
        command_name, argv = argv[0], argv[1:]
    else:
        command_name, argv = sys.argv[0], sys.argv[1:]
    config = Options()
    try:
        config.parseOptions(argv)
    except usage.error as e:
        if not run_by_human:
            raise
        print("%s:  %s" % (command_name, e))
        print()
        c = getattr(config, 'subOptions', config)
        print(str(c))
        sys.exit(1)

    command = config.subCommand
    so = config.subOptions
    if run_by_human:
        so.stdout = sys.stdout
        so.stderr = sys.stderr
    else:
        so.stdout = StringIO()
        so.stderr = StringIO()
    try:
        r = dispatch(command, so)
    except (usage.UsageError, UnknownVersion, EnvironmentError) as e:
        r = 1
        print("Error:", e, file=so.stderr)
    if run_by_human:
        sys.exit(r)
    return (r, so.stdout.getvalue(), so.stderr.getvalue())
