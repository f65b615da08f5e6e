"""Application entry point for Casebook backend server."""

from casebook.app import App
from casebook.config import Config
from casebook.logging import setup_logging
from casebook.web.runner import run_server


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    app = App(config)
    run_server(app, config)


if __name__ == "__main__":
    main()
