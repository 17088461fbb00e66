"""PeerTap establishes peer-to-peer WebRTC sessions through a relay."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('peertap')
