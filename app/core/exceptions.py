"""
Rate limiting error types

Limit denials are not exceptions: they are returned as a RateLimitDecision.
These classes cover configuration and infrastructure failures only.
"""


class RateLimitError(Exception):
    """Base class for rate limiting errors"""


class TierNotFound(RateLimitError):
    """The resolved tier has no entry in the rate_limits catalog"""

    def __init__(self, tier: str):
        self.tier = tier
        super().__init__(f"No rate limits configured for tier '{tier}'")


class StoreUnavailable(RateLimitError):
    """The counter store could not be reached or did not answer in time"""


class DuplicateReferralCode(RateLimitError):
    """Referral code generation kept colliding with existing codes"""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not mint a unique referral code after {attempts} attempts")


class DemoSessionNotFound(RateLimitError):
    """The demo session does not exist or has expired"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Demo session not found or expired: {session_id}")
