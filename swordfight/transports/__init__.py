# swordfight/transports/__init__.py
from .base import Transport
from .edge_relay import EdgeRelayTransport
from .mesh import PeerMeshTransport
from .relay_socket import RelaySocketTransport
from .synthetic import SyntheticOpponentTransport
