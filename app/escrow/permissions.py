"""
Permission classes for the escrow API.

- CronSecretPermission: Shared-secret check for scheduler-triggered endpoints
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.crypto import constant_time_compare
from rest_framework import permissions

from escrow.exceptions import EscrowConfigurationError

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class CronSecretPermission(permissions.BasePermission):
    """
    Allows access only to callers presenting ESCROW_CRON_SECRET.

    The secret is accepted from any of:
        ?key=<secret>
        Authorization: Bearer <secret>
        X-Cron-Secret: <secret>

    Raises EscrowConfigurationError (500) when no secret is configured, so
    a misconfigured deployment fails loudly instead of denying silently.
    """

    message = "Invalid cron secret."

    def has_permission(self, request: Request, view: APIView) -> bool:
        secret = getattr(settings, "ESCROW_CRON_SECRET", "")
        if not secret:
            raise EscrowConfigurationError("ESCROW_CRON_SECRET is not configured")

        return any(
            constant_time_compare(candidate, secret)
            for candidate in self._candidates(request)
        )

    @staticmethod
    def _candidates(request: Request) -> list[str]:
        candidates = []

        key = request.query_params.get("key")
        if key:
            candidates.append(key)

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            candidates.append(auth_header[len("Bearer "):].strip())

        header_secret = request.headers.get("X-Cron-Secret")
        if header_secret:
            candidates.append(header_secret)

        return candidates
