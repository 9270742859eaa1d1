"""Entry point for running stagerun as a module (``python -m stagerun``)."""

from __future__ import annotations


def main() -> None:
    from stagerun.cli.main import app

    app()


if __name__ == "__main__":
    main()
