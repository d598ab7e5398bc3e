"""Main entry point for the automation engine API server."""

import uvicorn

from .config import load_config
from .factory import create_app

config = load_config()
app = create_app(config)


def main():
    """Run the API server with uvicorn."""
    uvicorn.run("automation_engine.main:app", **config.get_uvicorn_config())


if __name__ == "__main__":
    main()
