"""
Ghost Admin API Gateway - Main Entry Point.

Configures logging, loads config.yml, prepares storage and embeds Gunicorn to
serve the Flask application from ghost.ghost.

Architecture:
    Docker -> ghost-gateway -> gateway.main() -> Gunicorn -> Flask app

Environment:
    GATEWAY_DEBUG            Enable DEBUG logging and disable the worker timeout
    GATEWAY_DATABASE_PATH    Override storage.database_path
    GATEWAY_BLOB_DIRECTORY   Override storage.blob_directory
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "ghost-gateway.log"


def configure_logging(debug: bool = False, log_file: str = LOG_FILE) -> None:
    """Send all loggers to a 10MB rotating file (3 backups) and stdout."""
    log_level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers to avoid duplicates (e.g., from gunicorn)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3
    )
    log_handler.setLevel(log_level)
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def main(debug: bool = False) -> None:
    """Main entry point for the ghost-gateway console command.

    Args:
        debug: Enable debug mode with infinite timeout for breakpoint debugging.
               Can be set via --debug flag or GATEWAY_DEBUG environment variable.

    Gunicorn Configuration (src/ghost/gunicorn_config.py):
        - Threaded workers sharing one sqlite database
        - Access logs and lifecycle hooks on stdout/stderr for Docker
    """
    from gunicorn.app.base import BaseApplication
    from auth.keys import AdminKeyStore
    from config import get_public_base_url, load_config
    from ghost.ghost import create_app
    from storage.blobs import LocalBlobStore
    from storage.database import Database

    if not debug:
        debug = os.environ.get("GATEWAY_DEBUG", "").lower() in ("true", "1", "yes")
        if len(sys.argv) > 1 and "--debug" in sys.argv:
            debug = True

    configure_logging(debug)
    if debug:
        logger.info("Debug mode enabled: verbose logging and worker timeout disabled for breakpoint debugging")

    logger.info("Loading configuration from config.yml")
    config = load_config()

    storage_config = config["storage"]
    logger.info(f"Opening database at {storage_config['database_path']}")
    database = Database(storage_config["database_path"])
    blob_store = LocalBlobStore(storage_config["blob_directory"], get_public_base_url(config))
    logger.info(f"Serving uploads from {blob_store.directory} at {blob_store.url_for('')}")

    purged = AdminKeyStore(database).purge_expired()
    logger.info(f"Startup cleanup removed {purged} expired Ghost token(s)")

    app = create_app(config=config, database=database, blob_store=blob_store)

    config_path = os.path.join(os.path.dirname(__file__), "..", "ghost", "gunicorn_config.py")

    class StandaloneApplication(BaseApplication):
        """Custom Gunicorn application for embedding within the gateway entry point."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            config_file = self.options.get("config")
            if config_file:
                self.cfg.set("config", config_file)
                with open(config_file, "r") as f:
                    config_code = f.read()
                config_namespace = {}
                exec(config_code, config_namespace)
                for key, value in config_namespace.items():
                    if key in self.cfg.settings and value is not None:
                        self.cfg.set(key.lower(), value)

            if self.options.get("debug"):
                self.cfg.set("timeout", 0)
            if self.options.get("single_worker"):
                self.cfg.set("workers", 1)

        def load(self):
            return self.application

    # In-memory chunk sessions are per process
    single_worker = config["uploads"].get("chunk_store") == "memory"
    if single_worker:
        logger.warning("uploads.chunk_store is 'memory': running a single Gunicorn worker")

    options = {
        "config": config_path,
        "debug": debug,
        "single_worker": single_worker,
    }
    StandaloneApplication(app, options).run()


# Allow running as a script for development/testing
if __name__ == "__main__":
    main()
