"""
Module implementing the command-line interface and invoking the logic of cloudmount.

cloudmount exposes a remote cloud storage account to the host environment as a file
system. "cloudmount mount" authorizes with the storage, registers the file system with
the host and then serves the file system requests that the host delivers. If the
process is stopped while mounted, "cloudmount serve" picks up where it left off using
the persisted access token. "cloudmount unmount" revokes the access token and removes
the mount again.

"cloudmount storage <root>" serves a local directory as the remote storage.
"""

import logging
import os
import signal
import sys
from typing import List, NoReturn, Optional

import cloudmount.constants as constants
from cloudmount.config import Config
from cloudmount.logger import log
import cloudmount.operations as operations
from .args import Arguments


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run the cloudmount command with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.ERROR)

    config = Config.load(os.path.expanduser(args.config))

    # Run operations of the provider or storage side.
    ops: operations.Operations

    if args.command == "storage":
        ops = operations.StorageOperations(args, config)
    else:
        ops = operations.ProviderOperations(args, config)

    try:
        exit_code = ops.run()
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to {args.command}: {e}")
        exit_code = constants.CLOUDMOUNT_ERROR_CODE

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
