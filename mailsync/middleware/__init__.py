"""ASGI middleware."""

from mailsync.middleware.correlation_id import CorrelationIDMiddleware

__all__ = ["CorrelationIDMiddleware"]
