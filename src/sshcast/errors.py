"""Exception types for sshcast."""


class SshcastError(Exception):
    """Base class for errors raised by sshcast."""


class ConfigError(SshcastError, ValueError):
    """Configuration could not be found, parsed or validated."""


class AggregatorClosedError(SshcastError, RuntimeError):
    """An aggregator was used after it produced its report."""
