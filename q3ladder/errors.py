# q3ladder/errors.py

"""Failure taxonomy for the ingestion pipeline.

None of these terminate the process. Each has a degraded continuation:

  ParseError          line dropped
  IdentityUnresolved  that side of the operation becomes a no-op
  ProviderTimeout     live source treated as unavailable, tail fallback
  StoreWriteFailure   logged, event considered lost
  FollowerExit        follower respawned after a fixed backoff
"""


class LadderError(Exception):
    """Base class for q3ladder errors."""


class ParseError(LadderError):
    """A line carried a known keyword but did not match its format."""

    def __init__(self, kind: str, line: str):
        super().__init__(f"Malformed {kind} line: {line!r}")
        self.kind = kind
        self.line = line


class IdentityUnresolved(LadderError):
    """Empty or environment name where a player was required."""


class ProviderUnavailable(LadderError):
    """The live status endpoint gave no usable answer."""


class ProviderTimeout(ProviderUnavailable):
    """The live status endpoint did not answer within the bound."""


class StoreWriteFailure(LadderError, RuntimeError):
    """A database write was rolled back."""


class FollowerExit(LadderError):
    """The external log follower process exited."""

    def __init__(self, returncode):
        super().__init__(f"Log follower exited with code {returncode}")
        self.returncode = returncode
