"""Entry point for running encontro as a module."""

from encontro.cli import app

if __name__ == "__main__":
    app()
