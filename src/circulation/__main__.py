"""Main entry point for the circulation package."""

from circulation.cli import app


if __name__ == "__main__":
    app()
