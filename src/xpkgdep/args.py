"""Argument parsing functionality for xpkgdep."""

import argparse

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _common_options() -> argparse.ArgumentParser:
    """Options shared by every subcommand."""
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--config",
                        dest="CONFIG",
                        help="Path to YAML config file (default: $XPKGDEP_CONFIG or ~/.xpkgdep/config.yaml)",
                        action="store", type=str)
    parent.add_argument("--cache-dir",
                        dest="CACHE_DIR",
                        help="Directory of the local package cache",
                        action="store", type=str)
    parent.add_argument("--registry",
                        dest="REGISTRY",
                        help="Registry for package references without a host",
                        action="store", type=str)
    parent.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="Deadline in seconds for each registry operation",
                        action="store", type=float)
    parent.add_argument("--max-concurrency",
                        dest="MAX_CONCURRENCY",
                        help="Maximum sibling dependencies retrieved concurrently",
                        action="store", type=int)
    parent.add_argument("--insecure",
                        dest="INSECURE",
                        help="Use plain HTTP to talk to the registry",
                        action="store_true")
    parent.add_argument("--clean-cache",
                        dest="CLEAN_CACHE",
                        help="Remove all cached packages before resolving",
                        action="store_true")
    parent.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store", type=str.upper,
                        choices=_LOG_LEVELS, default="INFO")
    return parent


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="xpkgdep",
        description="Resolve package dependencies and build schema snapshots",
        add_help=True,
    )
    sub = parser.add_subparsers(dest="action", required=True)

    resolve = sub.add_parser("resolve", parents=[common],
                             help="Resolve one package and its transitive dependencies")
    resolve.add_argument("PACKAGES", nargs=1, metavar="PACKAGE",
                         help="Package reference, optionally with @constraint")

    snapshot = sub.add_parser("snapshot", parents=[common],
                              help="List the types validated by the dependency closure of packages")
    snapshot.add_argument("PACKAGES", nargs="+", metavar="PACKAGE",
                          help="Package references, optionally with @constraint")

    validate = sub.add_parser("validate", parents=[common],
                              help="Validate manifests against the dependency closure of packages")
    validate.add_argument("-f", "--file",
                          dest="MANIFESTS",
                          help="YAML file of manifests to validate",
                          action="store", type=str, required=True)
    validate.add_argument("PACKAGES", nargs="+", metavar="PACKAGE",
                          help="Package references, optionally with @constraint")

    return parser.parse_args(argv)
