"""
Identity service: OAuth2 provider registry (Google, GitHub, Microsoft).

Each provider has an adapter that knows its endpoints and how to normalize
its user-info attributes into ``OAuthUserInfo``. Adapters are looked up by
registration name; an unknown name raises ``UnsupportedProvider``.

Flow:
  1. /oauth2/authorize/<provider> redirects the browser to ``authorization_url``.
  2. The provider redirects back to /oauth2/callback/<provider> with ?code=...
  3. ``fetch_user_attributes`` exchanges the code for an access token and
     returns the provider's raw user-info mapping.
  4. The provisioning flow calls ``adapter.normalize`` on that mapping.

Single-page clients that already hold a Google ID token skip the redirect:
``verify_google_id_token`` checks it and returns the same attribute mapping.

Uses httpx rather than authlib to avoid adding another dependency.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx

from ojtech_identity.exceptions import OAuth2AuthenticationError, UnsupportedProvider

_HTTP_TIMEOUT = 10.0


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=_HTTP_TIMEOUT)


# ── Normalized user info ──────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class OAuthUserInfo:
    external_id: str
    display_name: str
    email: str              # "" when the provider did not share one
    image_url: str | None


@dataclass(frozen=True, slots=True)
class ProviderEndpoints:
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _json_object(resp: httpx.Response, what: str) -> dict[str, Any]:
    body = resp.json()
    if not isinstance(body, dict):
        raise OAuth2AuthenticationError(f"{what} is not a JSON object")
    return body


def _display_name(name: Any, email: str, fallback: str) -> str:
    return _text(name) or (email.split("@")[0] if email else "") or fallback


class ProviderAdapter:
    name: ClassVar[str]
    endpoints: ClassVar[ProviderEndpoints]
    id_attribute: ClassVar[str]

    def external_id(self, attributes: Mapping[str, Any]) -> str:
        external_id = _text(attributes.get(self.id_attribute))
        if not external_id:
            raise OAuth2AuthenticationError(f"{self.name} did not return a user id")
        return external_id

    def normalize(self, attributes: Mapping[str, Any]) -> OAuthUserInfo:
        raise NotImplementedError

    async def extra_attributes(
        self, client: httpx.AsyncClient, access_token: str, attributes: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Hook for providers that need a second call to complete the profile."""
        return {}


class GoogleAdapter(ProviderAdapter):
    name = "google"
    id_attribute = "sub"
    endpoints = ProviderEndpoints(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v3/userinfo",
        scope="openid email profile",
    )

    def normalize(self, attributes: Mapping[str, Any]) -> OAuthUserInfo:
        external_id = self.external_id(attributes)
        email = _text(attributes.get("email"))
        return OAuthUserInfo(
            external_id=external_id,
            display_name=_display_name(attributes.get("name"), email, external_id),
            email=email,
            image_url=attributes.get("picture"),
        )


class GitHubAdapter(ProviderAdapter):
    name = "github"
    id_attribute = "id"
    endpoints = ProviderEndpoints(
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        scope="read:user user:email",
    )
    emails_url: ClassVar[str] = "https://api.github.com/user/emails"

    def normalize(self, attributes: Mapping[str, Any]) -> OAuthUserInfo:
        external_id = self.external_id(attributes)
        email = _text(attributes.get("email"))
        return OAuthUserInfo(
            external_id=external_id,
            display_name=_display_name(
                attributes.get("name") or attributes.get("login"), email, external_id
            ),
            email=email,
            image_url=attributes.get("avatar_url"),
        )

    async def extra_attributes(
        self, client: httpx.AsyncClient, access_token: str, attributes: Mapping[str, Any]
    ) -> dict[str, Any]:
        # /user only exposes the public email; private ones need /user/emails.
        if attributes.get("email"):
            return {}
        resp = await client.get(
            self.emails_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        if resp.status_code != 200:
            return {}
        entries = resp.json()
        if not isinstance(entries, list):
            return {}
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            if entry.get("primary") and entry.get("verified") and entry.get("email"):
                return {"email": entry["email"]}
        return {}


class MicrosoftAdapter(ProviderAdapter):
    """Uses the /common tenant: personal accounts and Azure AD work/school accounts."""

    name = "microsoft"
    id_attribute = "id"
    endpoints = ProviderEndpoints(
        authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        userinfo_url="https://graph.microsoft.com/v1.0/me",
        scope="openid email profile User.Read",
    )

    def normalize(self, attributes: Mapping[str, Any]) -> OAuthUserInfo:
        external_id = self.external_id(attributes)
        # Microsoft Graph returns mail or userPrincipalName
        email = _text(attributes.get("mail") or attributes.get("userPrincipalName"))
        return OAuthUserInfo(
            external_id=external_id,
            display_name=_display_name(attributes.get("displayName"), email, external_id),
            email=email,
            image_url=None,  # MS Graph photo requires a separate binary call
        )


# ── Registry ──────────────────────────────────────────────────────────────────

_REGISTRY: dict[str, ProviderAdapter] = {
    adapter.name: adapter for adapter in (GoogleAdapter(), GitHubAdapter(), MicrosoftAdapter())
}


def supported_providers() -> list[str]:
    return sorted(_REGISTRY)


def get_adapter(provider: str) -> ProviderAdapter:
    adapter = _REGISTRY.get(provider.strip().lower())
    if adapter is None:
        raise UnsupportedProvider(provider)
    return adapter


# ── Authorization code flow ───────────────────────────────────────────────────

def authorization_url(
    adapter: ProviderAdapter,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
) -> str:
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": adapter.endpoints.scope,
            "state": state,
        }
    )
    return f"{adapter.endpoints.authorize_url}?{query}"


async def fetch_user_attributes(
    adapter: ProviderAdapter,
    *,
    code: str,
    redirect_uri: str,
    client_id: str,
    client_secret: str,
) -> dict[str, Any]:
    """
    Exchange an authorization code and return the provider's raw user info.

    Raises OAuth2AuthenticationError on any failure (bad code, provider error,
    network error, unreadable body) so callers don't need provider-specific
    error handling.
    """
    try:
        async with _http_client() as client:
            # 1. Exchange code → tokens
            token_resp = await client.post(
                adapter.endpoints.token_url,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            if token_resp.status_code != 200:
                raise OAuth2AuthenticationError(
                    f"{adapter.name} rejected the authorization code"
                )
            access_token = _json_object(
                token_resp, f"{adapter.name} token response"
            ).get("access_token")
            if not access_token:
                raise OAuth2AuthenticationError(f"{adapter.name} returned no access token")

            # 2. Fetch user profile
            info_resp = await client.get(
                adapter.endpoints.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if info_resp.status_code != 200:
                raise OAuth2AuthenticationError(f"{adapter.name} user info request failed")
            attributes = _json_object(info_resp, f"{adapter.name} user info")
            attributes.update(await adapter.extra_attributes(client, access_token, attributes))
            return attributes
    except httpx.HTTPError as exc:
        raise OAuth2AuthenticationError(f"{adapter.name} is unreachable") from exc
    except (ValueError, TypeError) as exc:
        # Non-JSON or oddly shaped bodies, e.g. an HTML gateway page.
        raise OAuth2AuthenticationError(
            f"{adapter.name} returned an unreadable response"
        ) from exc


# ── Google ID token (SPA sign-in) ─────────────────────────────────────────────

GOOGLE_TOKENINFO_URL = "https://www.googleapis.com/oauth2/v3/tokeninfo"


async def verify_google_id_token(id_token: str, *, client_id: str) -> dict[str, Any]:
    """
    Verify a Google ID token with Google's tokeninfo endpoint and return its claims.

    The token must have been issued for ``client_id``; the claims carry the
    same ``sub``/``email``/``name``/``picture`` keys as the user-info endpoint.
    """
    try:
        async with _http_client() as client:
            resp = await client.get(GOOGLE_TOKENINFO_URL, params={"id_token": id_token})
            if resp.status_code != 200:
                raise OAuth2AuthenticationError("Unable to verify Google token")
            claims = _json_object(resp, "google token info")
    except httpx.HTTPError as exc:
        raise OAuth2AuthenticationError("google is unreachable") from exc
    except (ValueError, TypeError) as exc:
        raise OAuth2AuthenticationError("google returned an unreadable response") from exc

    if claims.get("aud") != client_id:
        raise OAuth2AuthenticationError("Token was not issued for this application")
    return claims
