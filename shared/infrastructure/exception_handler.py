"""
DRF exception handler

Renders DomainError subclasses raised anywhere below a view as
{"code": ..., "detail": ...} with the status code the error declares.
Everything else falls through to the stock DRF handler.
"""

from __future__ import annotations

import logging

from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler as drf_exception_handler  # type: ignore

from shared.domain.exceptions import DomainError

logger = logging.getLogger(__name__)


def domain_exception_handler(exc, context):
    if isinstance(exc, DomainError):
        view = context.get("view")
        logger.info(
            "Domain error %s in %s: %s",
            exc.code,
            view.__class__.__name__ if view else "unknown view",
            exc.message,
        )
        return Response(exc.to_dict(), status=exc.status_code)
    return drf_exception_handler(exc, context)
