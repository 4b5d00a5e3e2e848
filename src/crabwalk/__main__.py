"""Allow `python -m crabwalk` to launch the monitor."""

import asyncio
import sys

from crabwalk.main import main


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
