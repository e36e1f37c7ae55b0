"""TaskKeeper main application."""

import logging
import sys

import uvicorn

from task_keeper.factory import create_app, get_settings

# Create app instance for uvicorn
app = create_app()


def main() -> int:
    """Run the application."""
    config = get_settings()

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)-8s [%(name)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
