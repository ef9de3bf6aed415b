"""
Error taxonomy for the pulse detector.

Comparing fingerprints of different lengths is not an error here: the
scorer returns the maximum distance instead of raising.
"""


class PulseError(Exception):
    """Base class for pulse detector errors."""


class CaptureUnavailable(PulseError):
    """No capture device, or access to it was refused. Never retried."""


class DecodeFailure(PulseError):
    """An imported waveform could not be decoded or carried no signal."""


class DeliveryFailure(PulseError):
    """A detection notification could not be delivered."""
