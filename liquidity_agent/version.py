"""Version information for the liquidity agent."""

__version__ = "0.3.0"
__version_info__ = tuple(int(i) for i in __version__.split("."))


def get_version() -> str:
    """Get the current version string."""
    return __version__


def user_agent() -> str:
    """User-Agent sent with RPC requests."""
    return f"liquidity-agent/{__version__}"
