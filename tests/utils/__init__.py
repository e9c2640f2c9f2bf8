"""
Test utilities for the container execution engine.
"""

from .fake_daemon import SIDECAR_IMAGE, SUCCESS_ENVELOPE, FakeContainer, FakeDockerAPI, api_error

__all__ = [
    'FakeContainer',
    'FakeDockerAPI',
    'SIDECAR_IMAGE',
    'SUCCESS_ENVELOPE',
    'api_error',
]
