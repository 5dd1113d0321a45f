"""Allow ``python -m dbtestbed``."""

from dbtestbed.cli.app import app

if __name__ == "__main__":
    app()
