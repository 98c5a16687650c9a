"""Test utilities for gatehouse applications::

    from gatehouse.testing import TestClient
"""

from gatehouse.testing.client import TestClient

__all__ = ["TestClient"]
