"""Async HTTP gateway for the account server and the model provider."""

from __future__ import annotations

import base64
import json
import logging
import os
import re
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import ApiConfigPayload
from .errors import ApiError, CommunicationFailure, EmptyResult, SessionLost
from .models import ApiConfig, CapturedAudio

SERVER_URL = os.getenv("MARTICAPP_SERVER_URL", "https://jdweblab.com/marticapp")
CLIENT_TAG = "desktop"
DEFAULT_TIMEOUT = 60.0
TRANSCRIBE_INSTRUCTION = "Transcribe el siguiente audio."

_OAUTH_TOKEN_RE = re.compile(r"^ya29\.")


class LoginPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    message: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    api_config: Optional[ApiConfigPayload] = Field(default=None, alias="apiConfig")


class TokenPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: Optional[str] = Field(default=None, alias="accessToken")
    expires_in: Optional[float] = Field(default=None, alias="expiresIn")
    api_config: Optional[ApiConfigPayload] = Field(default=None, alias="apiConfig")


def _parse_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        parsed = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {"raw": response.text}
    if not isinstance(parsed, dict):
        return {"raw": parsed}
    return parsed


def _normalise_error(response: httpx.Response, payload: Dict[str, Any]) -> ApiError:
    error = payload.get("error")
    if isinstance(error, dict):
        return ApiError(
            error.get("code", response.status_code),
            error.get("message") or "Unknown API error",
            payload,
        )
    if isinstance(error, str) and error:
        return ApiError(response.status_code, error, payload)
    return ApiError(response.status_code, "Unknown API error", payload)


def _candidate_text(result: Dict[str, Any]) -> str:
    candidates = result.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "\n".join(part["text"] for part in parts if isinstance(part, dict) and part.get("text"))


class ApiGateway:
    """Thin typed wrapper over every outbound call.

    The underlying client keeps its cookie jar for the lifetime of the
    process; the token endpoint authenticates with the cookie set by login.
    """

    def __init__(
        self,
        server_url: str = SERVER_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def post(
        self,
        url: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, str]] = None,
        token: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST and return the decoded body, raising ApiError on any failure."""

        headers: Dict[str, str] = {}
        if isinstance(token, str) and _OAUTH_TOKEN_RE.match(token):
            headers["Authorization"] = f"Bearer {token}"
        if project_id:
            headers["X-Goog-User-Project"] = project_id

        try:
            response = await self._client.post(url, headers=headers, json=json_body, data=form)
        except httpx.HTTPError as exc:
            raise CommunicationFailure(f"Request to {url} failed: {exc}") from exc

        payload = _parse_body(response)
        if not response.is_success or payload.get("error"):
            raise _normalise_error(response, payload)
        return payload

    async def login(self, email: str, password: str) -> LoginPayload:
        try:
            payload = await self.post(
                f"{self.server_url}/login.php",
                form={"email": email, "password": password, "client": CLIENT_TAG},
            )
        except ApiError as exc:
            if "success" not in exc.payload:
                raise
            payload = exc.payload
        if "raw" in payload and "success" not in payload:
            raise CommunicationFailure("Login endpoint returned a non JSON body.")
        try:
            return LoginPayload.model_validate(payload)
        except ValidationError as exc:
            raise CommunicationFailure(f"Unexpected login response: {exc}") from exc

    async def fetch_token(self) -> TokenPayload:
        """Exchange the cookie session for a short lived access token."""

        try:
            payload = await self.post(f"{self.server_url}/api_generate_token.php", form={})
        except ApiError as exc:
            error = exc.payload.get("error")
            if not error or (isinstance(error, str) and "no_session" in error):
                raise SessionLost(str(error or "no_session")) from exc
            raise

        try:
            token = TokenPayload.model_validate(payload)
        except ValidationError as exc:
            raise CommunicationFailure(f"Unexpected token response: {exc}") from exc
        if not token.access_token:
            raise CommunicationFailure("The server response did not contain a token.")
        return token

    def _model_url(self, api_config: ApiConfig) -> str:
        base = api_config.gemini_api_base.rstrip("/")
        return f"{base}/models/{api_config.gemini_model_id}:generateContent"

    async def generate_content(
        self, system_prompt: str, user_text: str, token: Optional[str], api_config: ApiConfig
    ) -> str:
        body = {"contents": [{"parts": [{"text": f"{system_prompt}\n\n{user_text}"}]}]}
        result = await self.post(
            self._model_url(api_config),
            json_body=body,
            token=token,
            project_id=api_config.gcp_project_id,
        )
        return _candidate_text(result)

    async def transcribe_audio(
        self, audio: CapturedAudio, token: Optional[str], api_config: ApiConfig
    ) -> str:
        parts = [
            {"text": TRANSCRIBE_INSTRUCTION},
            {
                "inline_data": {
                    "mime_type": audio.mime_type,
                    "data": base64.b64encode(audio.data).decode("ascii"),
                }
            },
        ]
        result = await self.post(
            self._model_url(api_config),
            json_body={"contents": [{"parts": parts}]},
            token=token,
            project_id=api_config.gcp_project_id,
        )
        text = _candidate_text(result)
        if not text:
            raise EmptyResult("The transcription came back empty.")
        return text

    async def report_usage(self, word_count: int, category: str) -> None:
        logging.debug("Reporting %d words (%s)", word_count, category)
        await self.post(
            f"{self.server_url}/report_usage.php",
            form={"words": str(word_count), "tipo": category},
        )
