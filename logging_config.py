"""
Logging configuration for the liquidity agent CLI.

Usage:
    import logging_config
    logging_config.setup()
"""

import logging
import sys

# Third-party loggers that log every RPC round trip at INFO/DEBUG
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp.access", "asyncio")


def setup(level=logging.INFO):
    """
    Configure root logging with a short single-line format.

    - HH:MM:SS timestamps
    - RPC and HTTP client chatter held at WARNING
    - Agent loggers routed through the root handler
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s", datefmt="%H:%M:%S"
        )
    )
    root.addHandler(console)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Module loggers created before setup() carry their own handler
    for name, logger in list(logging.root.manager.loggerDict.items()):
        if name.startswith("liquidity_agent") and isinstance(logger, logging.Logger):
            logger.handlers.clear()
            logger.propagate = True
            logger.setLevel(logging.NOTSET)


def setup_minimal():
    """Only warnings and errors."""
    setup(level=logging.WARNING)


def setup_debug():
    """
    Verbose logging for debugging.
    Shows RPC traffic as well.
    """
    setup(level=logging.DEBUG)
    logging.getLogger("web3").setLevel(logging.DEBUG)
