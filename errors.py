"""Error types raised by the beat detection core."""


class InvalidConfiguration(ValueError):
    """A detector, cooldown or pulse setting is out of its valid range.

    Raised synchronously when the offending object is built or reconfigured.
    """


class TempoEstimationFailed(RuntimeError):
    """The tempo estimator gave no usable BPM; callers fall back to a fixed cooldown."""
