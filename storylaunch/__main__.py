"""Module entrypoint for running storylaunch as ``python -m storylaunch``."""

from __future__ import annotations

from storylaunch.cli import main


if __name__ == "__main__":
    main()
