from __future__ import annotations

import logging

from cfiportal.core.errors import ErrorKind
from cfiportal.core.results import Err, Ok, Result
from cfiportal.domain.cfi import Division
from cfiportal.services.api.base import map_records
from cfiportal.services.cfi.client import RemoteApiClient, unwrap_list
from cfiportal.services.cfi.token_context import AsyncTokenContext


logger = logging.getLogger(__name__)


class DivisionApiService:
    # Membership drives access control, so it is never served from cache.
    endpoint = "/Division/getDivisions"

    def __init__(self, client: RemoteApiClient, tokens: AsyncTokenContext) -> None:
        self._client = client
        self._tokens = tokens

    async def get_divisions_result(self) -> Result:
        token = self._tokens.get_token()
        if token is None:
            logger.error("cfi_token_missing endpoint=%s", self.endpoint)
            return Err(kind=ErrorKind.AUTH_REQUIRED, message="CFI token missing")
        result = await self._client.send(self.endpoint, {}, token=token)
        if isinstance(result, Err):
            return result
        return Ok(map_records(Division, unwrap_list(result.value), endpoint=self.endpoint))
