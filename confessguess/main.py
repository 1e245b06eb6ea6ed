"""Entry point for the Confess & Guess server."""

import logging
import sys

from .config import Settings
from .server import run


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    run(settings)


if __name__ == "__main__":
    main()
