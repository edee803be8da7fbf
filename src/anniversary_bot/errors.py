from __future__ import annotations


class ValidationError(ValueError):
    pass


class SchedulingFault(RuntimeError):
    pass


class DeliveryFault(RuntimeError):
    pass


# Raised after the in-memory change has already been applied.
class PersistenceFault(OSError):
    pass
