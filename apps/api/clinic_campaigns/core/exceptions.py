"""Campaign engine exceptions."""


class CampaignEngineError(Exception):
    """Base exception for campaign engine errors."""

    pass


class CampaignConfigError(CampaignEngineError):
    """Campaign definition cannot be interpreted (trigger, recurrence, audience)."""

    pass


class StepConfigError(CampaignConfigError):
    """A step references something that does not exist or is malformed."""

    pass


class UnknownJobTypeError(CampaignEngineError, ValueError):
    """No handler is registered for a queued job type."""

    pass
