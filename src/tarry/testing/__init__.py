"""Test utilities for tarry applications.

::

    from tarry.testing import TestClient
"""

from tarry.testing.client import TestClient

__all__ = ["TestClient"]
