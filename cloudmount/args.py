"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from cloudmount.constants import VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    command: str
    root: Optional[str]

    config: str

    storage_endpoint: Optional[str]
    host_endpoint: Optional[str]

    debug: bool
    timeout: Optional[int]
    workers: int

    COMMANDS = ("mount", "serve", "unmount", "storage")

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        parsed = cls._get_parser().parse_args(args, namespace=cls())

        if parsed.command == "storage" and parsed.root is None:
            cls._get_parser().error("the storage command requires a root directory")

        return parsed

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Expose a remote cloud storage account as a file system.",
            usage="cloudmount [option...] {mount,serve,unmount,storage} [root]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION}",
            help="show the program version",
        )

        # Primary arguments
        parser.add_argument(
            "command",
            choices=cls.COMMANDS,
            help="authorize and mount (mount), serve an existing mount (serve), "
            "unmount (unmount), or serve a local directory as storage (storage)",
        )
        parser.add_argument(
            "root", type=str, nargs="?", help="directory to serve with storage"
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.cloudmount/config)",
            default="~/.cloudmount/config",
        )

        # Endpoints, default to the ones in the config file
        parser.add_argument(
            "--storage-endpoint", type=str, help="endpoint of the storage service"
        )
        parser.add_argument(
            "--host-endpoint", type=str, help="endpoint to serve host requests on"
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        # Configure network timeout
        parser.add_argument(
            "--timeout",
            type=cls._parse_timeout,
            help="timeout for storage communications in milliseconds",
        )

        # Configure number of storage workers
        parser.add_argument(
            "--workers", type=int, help="number of storage service workers", default=4
        )

        return parser

    @staticmethod
    def _parse_timeout(arg: str) -> int:
        try:
            val = int(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
