"""Exceptions raised by memindex.

Only two conditions surface as errors from the ranking engine: bad
configuration (at load) and an invalid request (e.g. a limit above the
configured maximum). Everything else degrades to a bounded default.
"""


class MemindexError(Exception):
    """Base class for memindex errors."""


class ConfigError(MemindexError, ValueError):
    """Configuration value outside its valid domain."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid memindex configuration: " + "; ".join(self.problems))


class InvalidRequestError(MemindexError, ValueError):
    """A caller request that cannot be served as asked (e.g. limit > max_limit)."""
