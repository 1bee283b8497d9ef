class RendezvousError(Exception):
    """Base class for errors raised by the negotiation agent."""


class InvalidRoomError(RendezvousError, ValueError):
    """Room id missing or blank."""


class CallInProgressError(RendezvousError):
    """A call was started while another one is still active."""


class MediaAcquisitionError(RendezvousError):
    """Camera or microphone could not be opened (permission denied, device busy)."""


class NegotiationError(RendezvousError):
    """Creating or applying a session description failed."""
