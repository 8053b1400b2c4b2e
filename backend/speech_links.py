"""
Streaming STT connection info for the frontend.
The browser talks to Deepgram / iFlytek directly; we only hand out URLs and auth.
"""

import base64
import hashlib
import hmac
from email.utils import formatdate
from urllib.parse import urlencode, urlparse

import settings


class SpeechConfigError(Exception):
    pass


DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"

DEEPGRAM_DEFAULT_OPTIONS = {
    "encoding": "linear16",     # 16-bit PCM
    "sample_rate": 16000,
    "channels": 1,
    "language": "en-US",
    "model": "nova-3",
    "smart_format": True,
    "punctuate": True,
    "interim_results": True,
    "endpointing": 300,         # ms of silence that ends an utterance
}

XFYUN_IAT_URL = "wss://iat-api.xfyun.cn/v2/iat"


def _query_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def deepgram_connection_info(options: dict = None, api_key: str = None) -> dict:
    """Everything the browser needs to open a Deepgram websocket (token via subprotocol)."""
    api_key = settings.DEEPGRAM_API_KEY if api_key is None else api_key
    if not api_key:
        raise SpeechConfigError("Deepgram API key not configured (DEEPGRAM_API_KEY)")

    merged = {**DEEPGRAM_DEFAULT_OPTIONS, **(options or {})}
    query = urlencode({k: _query_value(v) for k, v in merged.items()})
    return {
        "url": f"{DEEPGRAM_LISTEN_URL}?{query}",
        "protocol": ["token", api_key],
        "options": merged,
    }


def xfyun_signed_url(api_key: str = None, api_secret: str = None, app_id: str = None,
                     date: str = None) -> str:
    """iFlytek IAT websocket URL signed with HMAC-SHA256 over host, date and request line."""
    api_key = settings.XFYUN_API_KEY if api_key is None else api_key
    api_secret = settings.XFYUN_API_SECRET if api_secret is None else api_secret
    app_id = settings.XFYUN_APP_ID if app_id is None else app_id
    if not (api_key and api_secret and app_id):
        raise SpeechConfigError("iFlytek configuration incomplete (XFYUN_API_KEY / XFYUN_API_SECRET / XFYUN_APP_ID)")

    # RFC1123 timestamp
    date = date or formatdate(usegmt=True)
    parsed = urlparse(XFYUN_IAT_URL)

    signature_origin = "\n".join([
        f"host: {parsed.netloc}",
        f"date: {date}",
        f"GET {parsed.path} HTTP/1.1",
    ])
    digest = hmac.new(api_secret.encode(), signature_origin.encode(), hashlib.sha256).digest()
    signature = base64.b64encode(digest).decode()

    authorization_origin = (
        f'api_key="{api_key}", algorithm="hmac-sha256", '
        f'headers="host date request-line", signature="{signature}"'
    )
    authorization = base64.b64encode(authorization_origin.encode()).decode()

    query = urlencode({"host": parsed.netloc, "date": date, "authorization": authorization})
    return f"{XFYUN_IAT_URL}?{query}"
