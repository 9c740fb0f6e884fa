"""Module entrypoint for running chapterqa as ``python -m chapterqa``."""

from __future__ import annotations

from chapterqa.cli import main


if __name__ == "__main__":
    main()
