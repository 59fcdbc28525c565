"""
OAuth 1.0a request signing (HMAC-SHA1).

Every request is signed on its own from the consumer and token pairs plus
method, URL and parameters. There is no shared session.
"""
import base64
import hashlib
import hmac
import secrets
import time
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit


def percent_encode(value) -> str:
    """RFC 3986 encoding as required by OAuth 1.0a."""
    return quote(str(value), safe="~-._")


def normalize_url(url: str) -> str:
    """Base string URI: scheme and host lowercased, default port and query dropped."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if (scheme, netloc.rsplit(":", 1)[-1]) in (("http", "80"), ("https", "443")):
        netloc = netloc.rsplit(":", 1)[0]
    return urlunsplit((scheme, netloc, parts.path or "/", "", ""))


def signature_base_string(method: str, url: str, params: Iterable[Tuple[str, str]]) -> str:
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in params)
    normalized = "&".join(f"{k}={v}" for k, v in encoded)
    return "&".join((
        method.upper(),
        percent_encode(normalize_url(url)),
        percent_encode(normalized),
    ))


class OAuth1Signer:
    """
    Builds ``Authorization: OAuth ...`` headers.

    Form and query parameters take part in the signature, JSON bodies do not.
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        token: str,
        token_secret: str,
        nonce_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._token = token
        self._token_secret = token_secret
        self._nonce_factory = nonce_factory or (lambda: secrets.token_hex(16))
        self._clock = clock or time.time

    def oauth_params(self) -> Dict[str, str]:
        return {
            "oauth_consumer_key": self._consumer_key,
            "oauth_nonce": self._nonce_factory(),
            "oauth_signature_method": "HMAC-SHA1",
            "oauth_timestamp": str(int(self._clock())),
            "oauth_token": self._token,
            "oauth_version": "1.0",
        }

    def sign(self, method: str, url: str, params: Optional[Mapping[str, object]] = None) -> str:
        """
        Compute the authorization header value for one request.

        Args:
            method: HTTP method
            url: Request URL (its query string is signed too)
            params: Form body or extra query parameters

        Returns:
            Header value starting with ``OAuth ``
        """
        oauth = self.oauth_params()
        all_params = list(parse_qsl(urlsplit(url).query, keep_blank_values=True))
        all_params.extend((k, str(v)) for k, v in (params or {}).items())
        all_params.extend(oauth.items())

        base = signature_base_string(method, url, all_params)
        key = f"{percent_encode(self._consumer_secret)}&{percent_encode(self._token_secret)}"
        digest = hmac.new(key.encode(), base.encode(), hashlib.sha1).digest()
        oauth["oauth_signature"] = base64.b64encode(digest).decode()

        return "OAuth " + ", ".join(
            f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth.items())
        )

    def headers(self, method: str, url: str, params: Optional[Mapping[str, object]] = None) -> Dict[str, str]:
        return {"Authorization": self.sign(method, url, params)}
