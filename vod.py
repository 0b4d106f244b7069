"""
Minimal Aliyun VOD client.

Only the RPC calls the front-end needs to upload media are proxied
(CreateUploadVideo, RefreshUploadVideo). Requests are signed with the
Aliyun RPC scheme: HMAC-SHA1 over ``GET&%2F&<canonical query>`` keyed with
``<secret>&``.
"""
import base64
import hashlib
import hmac
import uuid
from datetime import datetime
from typing import Any, Dict, Mapping
from urllib.parse import quote

import requests
import structlog

from config import get_settings
from errors import UpstreamError

logger = structlog.get_logger(__name__)

API_VERSION = "2017-03-21"


def percent_encode(value: Any) -> str:
    return quote(str(value), safe="~")


def canonical_query(params: Mapping[str, Any]) -> str:
    return "&".join(f"{percent_encode(k)}={percent_encode(params[k])}" for k in sorted(params))


def string_to_sign(params: Mapping[str, Any], method: str = "GET") -> str:
    return f"{method}&{percent_encode('/')}&{percent_encode(canonical_query(params))}"


def sign(params: Mapping[str, Any], secret: str, method: str = "GET") -> str:
    digest = hmac.new(f"{secret}&".encode(), string_to_sign(params, method).encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


class VodClient:
    def __init__(self, access_key_id: str, access_key_secret: str, endpoint: str, timeout: float = 10.0):
        self.access_key_id = access_key_id
        self.access_key_secret = access_key_secret
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    def common_params(self, action: str) -> Dict[str, str]:
        return {
            "Action": action,
            "Format": "JSON",
            "Version": API_VERSION,
            "AccessKeyId": self.access_key_id,
            "SignatureMethod": "HMAC-SHA1",
            "SignatureVersion": "1.0",
            "SignatureNonce": uuid.uuid4().hex,
            "Timestamp": datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    def signed_url(self, action: str, params: Mapping[str, Any]) -> str:
        query = {**params, **self.common_params(action)}
        signature = sign(query, self.access_key_secret)
        return f"{self.endpoint}/?{canonical_query(query)}&Signature={percent_encode(signature)}"

    def request(self, action: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        url = self.signed_url(action, params)
        logger.info("vod_request", action=action)
        try:
            resp = requests.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("vod_unreachable", action=action, error=str(e))
            raise UpstreamError(f"VOD request failed: {e}")
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            logger.error("vod_error", action=action, status=resp.status_code, code=data.get("Code"))
            raise UpstreamError(f"VOD {data.get('Code', resp.status_code)}: {data.get('Message', 'request failed')}")
        return data


def get_vod_client() -> VodClient:
    settings = get_settings()
    if not settings.vod_access_key_id or not settings.vod_access_key_secret:
        raise UpstreamError("VOD is not configured")
    return VodClient(
        settings.vod_access_key_id,
        settings.vod_access_key_secret,
        settings.vod_url,
        timeout=settings.vod_timeout,
    )
