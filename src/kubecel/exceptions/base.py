from __future__ import annotations


class KubecelError(Exception):
    """Root of the kubecel exception hierarchy.

    Every error raised on purpose by kubecel derives from this class, so an
    embedding application can catch ``KubecelError`` at its boundary and let
    genuine programming errors (``TypeError``, ``KeyError`` ...) surface.

    Attributes:
        message: Human-readable description of the failure.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
