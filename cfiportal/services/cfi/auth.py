from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import ValidationError

from cfiportal.core.config import get_settings
from cfiportal.core.errors import InvalidCredentialsError, RemoteServerError
from cfiportal.domain.cfi import CfiIdentity
from cfiportal.services.cfi.client import RemoteApiClient


logger = logging.getLogger(__name__)

TOKEN_LOGIN_ENDPOINT = "/Utilisateurs/getUtilisateurGorillias"
CREDENTIALS_LOGIN_ENDPOINT = "/Utilisateurs/getUtilisateurMyCFiA"

_SHA512_HEX = re.compile(r"^[a-f0-9]{128}$")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_valid_token_format(token: str) -> bool:
    return bool(_UUID.match(token))


def _identity_from(payload: Any, endpoint: str) -> CfiIdentity:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    try:
        return CfiIdentity.model_validate(payload)
    except ValidationError as exc:
        raise RemoteServerError(f"CFI login payload is incomplete: {exc.error_count()} errors", endpoint=endpoint) from exc


class CfiAuthService:
    def __init__(self, client: RemoteApiClient) -> None:
        self._client = client

    async def authenticate(self, jeton_utilisateur: str) -> CfiIdentity:
        # Exchange a user token issued by the CFI portal for the user profile.
        jeton_utilisateur = jeton_utilisateur.strip()
        if not jeton_utilisateur or not is_valid_token_format(jeton_utilisateur):
            raise InvalidCredentialsError("user token must be a UUID")
        payload = await self._client.post(
            TOKEN_LOGIN_ENDPOINT,
            {"jetonUtilisateur": jeton_utilisateur, "clefApi": get_settings().cfi_api_key},
        )
        identity = _identity_from(payload, TOKEN_LOGIN_ENDPOINT)
        # The login token doubles as the session token when CFI omits one.
        if not identity.jeton:
            identity = identity.model_copy(update={"jeton": jeton_utilisateur})
        logger.info("cfi_auth_token_ok user_id=%s division_id=%s", identity.id, identity.id_division)
        return identity

    async def authenticate_with_credentials(self, identifiant: str, password_sha512: str) -> CfiIdentity:
        identifiant = identifiant.strip()
        if not identifiant or not password_sha512:
            raise InvalidCredentialsError("username and password are required")
        if not _SHA512_HEX.match(password_sha512):
            raise InvalidCredentialsError("password must be a lowercase SHA-512 hex digest")
        payload = await self._client.post(
            CREDENTIALS_LOGIN_ENDPOINT,
            {"identifiant": identifiant, "mdp": password_sha512, "clefApi": get_settings().cfi_api_key},
        )
        identity = _identity_from(payload, CREDENTIALS_LOGIN_ENDPOINT)
        if not identity.jeton:
            raise RemoteServerError("CFI login response carries no token", endpoint=CREDENTIALS_LOGIN_ENDPOINT)
        logger.info("cfi_auth_credentials_ok user_id=%s division_id=%s", identity.id, identity.id_division)
        return identity
