"""General purpose utilities."""
from __future__ import annotations
