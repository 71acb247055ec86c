"""Google sign-in: code exchange and OIDC ID token verification."""

import httpx
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from pydantic import BaseModel

from app.core.config import settings

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class GoogleUserInfo(BaseModel):
    """Verified identity from a Google ID token."""

    sub: str
    email: str  # lowercased
    name: str
    picture: str | None


async def exchange_code_for_tokens(code: str) -> dict:
    """
    Exchange a login authorization code for tokens (id_token, access_token).

    Raises:
        httpx.HTTPStatusError: If Google rejects the exchange
    """
    async with httpx.AsyncClient(timeout=20.0) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "redirect_uri": settings.GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
        )
        response.raise_for_status()
        return response.json()


def verify_id_token(token: str, expected_nonce: str) -> GoogleUserInfo:
    """
    Verify a Google ID token.

    google-auth checks the signature and the aud/exp/iat claims; we also
    require a verified email and the nonce sent with the login request.

    Raises:
        ValueError: If any check fails
    """
    idinfo = id_token.verify_oauth2_token(token, google_requests.Request(), settings.GOOGLE_CLIENT_ID)

    if idinfo.get("iss") not in GOOGLE_ISSUERS:
        raise ValueError("Invalid issuer")
    if not idinfo.get("email_verified"):
        raise ValueError("Email not verified by Google")
    if idinfo.get("nonce") != expected_nonce:
        raise ValueError("Nonce mismatch")

    return GoogleUserInfo(
        sub=idinfo["sub"],
        email=idinfo["email"].lower(),
        name=idinfo.get("name", ""),
        picture=idinfo.get("picture"),
    )
