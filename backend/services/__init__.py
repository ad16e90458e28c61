# Services Package - transport-free core of the portal
# Every operation takes a Session and a Caller and raises PortalError subclasses

from .errors import PortalError
from .policy import Caller, Operation
from . import identity, children, requests, statistics

__all__ = [
    "PortalError",
    "Caller",
    "Operation",
    "identity",
    "children",
    "requests",
    "statistics",
]
