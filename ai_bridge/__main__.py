"""Allow ``python -m ai_bridge``."""

from ai_bridge.cli.main import app

if __name__ == "__main__":
    app()
