"""Allow ``python -m simdeploy`` to run the command-line interface."""

from __future__ import annotations

import sys


def main() -> None:
    from simdeploy import run
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
