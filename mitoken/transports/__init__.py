"""Package containing all supported api transports."""

from .basetransport import BaseTransport
from .rc4transport import Rc4Transport
from .signedtransport import SignedTransport

__all__ = [
    "BaseTransport",
    "Rc4Transport",
    "SignedTransport",
]
