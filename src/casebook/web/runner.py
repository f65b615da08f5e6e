"""Uvicorn runner for the Casebook API."""

import copy

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from casebook.app import App
from casebook.config import Config
from casebook.web.server import create_fastapi_app


def run_server(app: App, config: Config) -> None:
    """Serve the API, trusting forwarded headers from the configured proxies only.

    Behind a TLS-terminating proxy the forwarded scheme decides whether the
    session cookie is marked secure.
    """
    fastapi_app = create_fastapi_app(app, config)

    log_config = copy.deepcopy(LOGGING_CONFIG)
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s - %(client_addr)s - "%(request_line)s" %(status_code)s'
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s - %(levelname)s - %(message)s"

    uvicorn.run(
        fastapi_app,
        host=config.host,
        port=config.port,
        log_config=log_config,
        access_log=True,
        proxy_headers=True,
        forwarded_allow_ips=config.forwarded_allow_ips,
    )
