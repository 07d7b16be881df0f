"""
Entry point for running serum_gateway as a module.

Usage:
    python -m serum_gateway [command] [options]

Commands:
    serve       Start the HTTP gateway (default)
    doctor      Run preflight checks

Options:
    --env ENV           Environment (development/production)
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Serum DEX REST gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "doctor"],
        help="Command to execute (default: serve)",
    )
    parser.add_argument(
        "--env",
        default=os.getenv("ENVIRONMENT", "development"),
        help="Environment (development/production)",
    )

    args = parser.parse_args()

    # Import here to avoid slow startup for --help
    from serum_gateway.app.run import run_doctor, run_server

    try:
        if args.command == "serve":
            return asyncio.run(run_server(env=args.env))
        elif args.command == "doctor":
            return asyncio.run(run_doctor(env=args.env))
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
