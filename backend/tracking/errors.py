"""Failure taxonomy for a health-check run.

NavigationFailure and DetectionFailure abort the run (report status ERROR).
InteractionFailure is local to one CTA element and is recorded as a
click_failed outcome. Expected timeouts (consent beacon wait, selector
probing) are not exceptions at all; they are recorded as observed absence.
"""


class HealthCheckError(Exception):
    """Base class for health-check failures."""


class NavigationFailure(HealthCheckError):
    """Initial load and the degraded fallback load both failed."""


class DetectionFailure(HealthCheckError):
    """Page evaluation failed during tag/dataLayer inspection."""


class InteractionFailure(HealthCheckError):
    """A single CTA element could not be interacted with."""
