"""
Fleet-level exceptions for the Pantheon Fleet Updater.

These abort the whole run before any site is touched. Per-site failures are
not exceptions; they are recorded on the site's UpdateReport.
"""


class FleetUpdateError(Exception):
    """Base class for errors that stop the entire run."""


class EmptyResultError(FleetUpdateError):
    """Raised when the site selectors or the config file match no sites."""


class ConfigConflict(FleetUpdateError):
    """Raised when a config file is combined with ad-hoc update flags."""


class MissingConfigFile(FleetUpdateError):
    """Raised when the requested config file does not exist."""


class ConfigError(FleetUpdateError):
    """Raised when a config file cannot be parsed or has the wrong shape."""
