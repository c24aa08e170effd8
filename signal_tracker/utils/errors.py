"""Exception taxonomy for the signal engine"""


class SignalTrackerError(Exception):
    """Base class for all signal tracker errors"""


class DataUnavailableError(SignalTrackerError):
    """A price, sentiment, flow or model collaborator failed or timed out"""

    def __init__(self, source: str, pair: str | None = None, reason: str = ""):
        self.source = source
        self.pair = pair
        self.reason = reason
        detail = f"{source} unavailable"
        if pair:
            detail += f" for {pair}"
        if reason:
            detail += f": {reason}"
        super().__init__(detail)


class CorruptRecordError(SignalTrackerError):
    """A persisted record could not be parsed or normalized"""


class LadderInvariantError(SignalTrackerError):
    """Entry/stop/take-profit ladder is not ordered in the direction of travel"""
