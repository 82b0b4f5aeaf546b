"""Google ID-token verification through Google's token-info endpoint."""

from __future__ import annotations

from typing import Any

import requests
from fastapi import status

from crm_backend.core.concurrency import run_in_thread_limited
from crm_backend.core.config import settings
from crm_backend.core.errors import CRMError

_TRUSTED_ISSUERS = {"accounts.google.com", "https://accounts.google.com"}


class InvalidCredentialError(CRMError):
    status_code = status.HTTP_401_UNAUTHORIZED


def _fetch_token_info(credential: str) -> dict[str, Any]:
    resp = requests.get(
        settings.GOOGLE_TOKENINFO_URL, params={"id_token": credential}, timeout=10
    )
    if resp.status_code != 200:
        raise InvalidCredentialError("Invalid Google credential")
    return resp.json()


async def verify_google_credential(credential: str) -> dict[str, Any]:
    """Return the verified token claims (``sub``, ``email``, ``name``, ``picture``)."""

    try:
        claims = await run_in_thread_limited(_fetch_token_info, credential)
    except requests.RequestException as exc:
        raise CRMError(
            "Google sign-in is unavailable", status_code=status.HTTP_502_BAD_GATEWAY
        ) from exc
    if claims.get("iss") not in _TRUSTED_ISSUERS:
        raise InvalidCredentialError("Invalid Google credential")
    if settings.GOOGLE_CLIENT_ID and claims.get("aud") != settings.GOOGLE_CLIENT_ID:
        raise InvalidCredentialError("Google credential was issued for another client")
    if str(claims.get("email_verified", "false")).lower() != "true" or not claims.get("email"):
        raise InvalidCredentialError("Google account email is not verified")
    return claims
