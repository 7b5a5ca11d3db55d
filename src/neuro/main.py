"""Neuro entry point."""

import sys

from dotenv import find_dotenv, load_dotenv

from .cli import run_cli


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    # Bare `neuro` runs the bot
    argv = sys.argv[1:] or ["bot"]
    sys.exit(run_cli(argv))


if __name__ == "__main__":
    main()
