#!/usr/bin/env python3

import argparse
from collections.abc import Sequence


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="On-chain receipt wallet utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  history <address>          Reconcile and print transaction history
  frames <hex|@file>         Split call data into animated-QR frame texts
  lookup <reference>         Decrypt the receipt of block:<hash>:tx:<hash>
  serve [--host] [--port]    Start the companion service

Notes:
  --seed-hex takes the account's 32-byte Ed25519 seed; without it receipts
  stay encrypted in history output.
""",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    history_parser = subparsers.add_parser("history", help="Reconcile and print transaction history")
    history_parser.add_argument("address", help="SS58 address of the account")
    history_parser.add_argument("--page-size", type=int, default=None, help="Extrinsics to request (default: config)")
    history_parser.add_argument("--seed-hex", default=None, help="Account seed used to decrypt receipts")
    history_parser.add_argument("--json", action="store_true", help="Print history as JSON")

    frames_parser = subparsers.add_parser("frames", help="Split call data into QR frame texts")
    frames_parser.add_argument("payload", help="0x-hex call data, or @path to a file with raw bytes")
    frames_parser.add_argument("--chunk-size", type=int, default=None, help="Characters per frame (default: config)")
    frames_parser.add_argument("--loop", action="store_true", help="Cycle frames in the terminal until Ctrl+C")

    lookup_parser = subparsers.add_parser("lookup", help="Decrypt the receipt of one transaction")
    lookup_parser.add_argument("reference", help="block:<0x block hash>:tx:<0x extrinsic hash>")
    lookup_parser.add_argument("--seed-hex", default=None, help="Account seed used to decrypt the receipt")

    serve_parser = subparsers.add_parser("serve", help="Start the companion service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    serve_parser.add_argument("--seed-hex", default=None, help="Account seed used to decrypt receipts")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    from chainreceipt.cli import wallet

    if args.command == "history":
        return wallet.cmd_history(args)
    if args.command == "frames":
        return wallet.cmd_frames(args)
    if args.command == "lookup":
        return wallet.cmd_lookup(args)
    if args.command == "serve":
        return wallet.cmd_serve(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
