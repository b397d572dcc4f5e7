#!/usr/bin/env python3
# /// script
# requires-python = ">=3.8"
# dependencies = []
# ///

import argparse
import logging
import os
import sys
from typing import List, Optional

from playback_session import play_session
from record_session import record_session
from session_errors import CmdplayError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdplay",
        description="Record the keystrokes of a shell session and play them back with the same timing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cmdplay -r -f demo.session
  cmdplay -f demo.session
  cmdplay -r -s /bin/bash -f bug.session
        """
    )

    parser.add_argument(
        "-f",
        dest="file",
        help="Output file in record mode, input file in play mode"
    )

    parser.add_argument(
        "-r",
        dest="record",
        action="store_true",
        help="Record a session instead of playing one"
    )

    parser.add_argument(
        "-s",
        dest="shell",
        help="Shell to run (default: $SHELL environment variable)"
    )

    parser.add_argument(
        "--log-file",
        help="Write diagnostic logs to this file"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug messages (with --log-file)"
    )

    return parser


def configure_logging(log_file: Optional[str], verbose: bool) -> None:
    # The terminal is in raw mode during a session, so logs only go to a file.
    if not log_file:
        return
    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(threadName)s %(name)s %(levelname)s: %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.file:
        parser.print_usage(sys.stderr)
        sys.exit(1)

    shell_command = args.shell or os.environ.get("SHELL")
    if not shell_command:
        print("$SHELL not found, use -s flag to specify shell to use", file=sys.stderr)
        parser.print_usage(sys.stderr)
        sys.exit(1)

    if not os.path.isfile(shell_command) or not os.access(shell_command, os.X_OK):
        print(f"Error: Shell '{shell_command}' not found or not executable", file=sys.stderr)
        sys.exit(1)

    configure_logging(args.log_file, args.verbose)

    try:
        if args.record:
            print("Recording started. Exit shell session to stop.")
            sys.stdout.flush()
            record_session(args.file, shell_command)
            print(f"Session saved to {args.file}")
        else:
            print(f"Attempting to play {args.file}")
            sys.stdout.flush()
            play_session(args.file, shell_command)
            print("Play complete")
    except (CmdplayError, OSError) as e:
        logging.getLogger(__name__).error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
