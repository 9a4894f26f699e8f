"""
providers.py — 地理編碼 Provider
================================

兩個可互換的查詢後端，介面相同:

    provider.resolve(query, bias=None) -> Optional[Dict]
        {'lat': float, 'lng': float, 'confidence': float|None,
         'formatted': str|None, 'components': {層級: 名稱}}

  - OpenCageProvider   主要（需 API key，支援 proximity 偏好）
  - NominatimProvider  備援（OpenStreetMap 公開實例，不支援 proximity）

Provider 本身不做速率限制與重試，由 resilience.call_with_retry() 包裝。
HTTP 錯誤分類:
  429 / 5xx / 網路錯誤 → TransientProviderError（可重試）
  其他 4xx             → ProviderRejectedError（該候選直接視為查無）
"""

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# 回傳的行政區欄位中，驗證需要用到的鍵
REGION_COMPONENT_KEYS = (
    'state', 'province', 'county', 'city', 'town', 'municipality',
    'city_district', 'district', 'suburb', 'village',
)

# 台灣範圍（OpenCage: minLng,minLat,maxLng,maxLat；Nominatim viewbox: x1,y1,x2,y2）
TAIWAN_BOUNDS = '118,20,123,27'
TAIWAN_VIEWBOX = '118,27,123,20'

DEFAULT_TIMEOUT = 15


class ProviderError(Exception):
    """Provider 呼叫失敗"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientProviderError(ProviderError):
    """暫時性錯誤（429 / 5xx / 網路），可重試"""


class ProviderRejectedError(ProviderError):
    """Provider 明確拒絕（429 以外的 4xx），不重試"""


def _http_get_json(url: str, params: Dict, headers: Optional[Dict] = None,
                   timeout: float = DEFAULT_TIMEOUT):
    """GET + 解析 JSON，錯誤轉成 ProviderError 子類別"""
    full_url = f"{url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(full_url)
    for k, v in (headers or {}).items():
        req.add_header(k, v)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read().decode('utf-8')
    except urllib.error.HTTPError as e:
        if e.code == 429 or e.code >= 500:
            raise TransientProviderError(f"HTTP {e.code}", status=e.code) from e
        raise ProviderRejectedError(f"HTTP {e.code}", status=e.code) from e
    except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
        raise TransientProviderError(f"network error: {e}") from e

    try:
        return json.loads(body)
    except ValueError as e:
        raise TransientProviderError(f"invalid JSON: {e}") from e


def _region_components(raw: Optional[Dict]) -> Dict[str, str]:
    return {k: str(v) for k, v in (raw or {}).items() if k in REGION_COMPONENT_KEYS and v}


class GeocodeProvider:
    """查詢後端共同介面：resolve(query, bias) → 命中 dict 或 None"""

    name = 'provider'
    supports_proximity = False

    def resolve(self, query: str, bias: Optional[Tuple[float, float]] = None) -> Optional[Dict]:
        raise NotImplementedError


class OpenCageProvider(GeocodeProvider):
    """
    OpenCage Geocoding API（主要 provider）

    用法:
        provider = OpenCageProvider(api_key)
        provider.resolve("桃園市中壢區中山路100號", bias=(24.99, 121.30))
    """

    name = 'opencage'
    supports_proximity = True
    BASE_URL = "https://api.opencagedata.com/geocode/v1/json"

    def __init__(self, api_key: str, base_url: str = None, timeout: float = DEFAULT_TIMEOUT):
        self.api_key = api_key
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout

    def resolve(self, query: str, bias: Optional[Tuple[float, float]] = None) -> Optional[Dict]:
        params = {
            'key': self.api_key,
            'q': query,
            'countrycode': 'tw',
            'language': 'zh-TW',
            'limit': 1,
            'no_annotations': 1,
            'bounds': TAIWAN_BOUNDS,
        }
        if bias:
            params['proximity'] = f"{bias[0]},{bias[1]}"

        data = _http_get_json(self.base_url, params, timeout=self.timeout)
        results = (data or {}).get('results') or []
        if not results:
            return None

        best = results[0]
        geometry = best.get('geometry') or {}
        if geometry.get('lat') is None or geometry.get('lng') is None:
            return None
        return {
            'lat': float(geometry['lat']),
            'lng': float(geometry['lng']),
            'confidence': best.get('confidence'),
            'formatted': best.get('formatted'),
            'components': _region_components(best.get('components')),
        }


class NominatimProvider(GeocodeProvider):
    """
    OpenStreetMap Nominatim（備援 provider）
    公開實例: 1 req/sec 限制，需帶可識別的 User-Agent
    """

    name = 'nominatim'
    supports_proximity = False
    PUBLIC_URL = "https://nominatim.openstreetmap.org/search"

    def __init__(self, user_agent: str = "clinic-geocoder/1.0", base_url: str = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.user_agent = user_agent
        self.base_url = base_url or self.PUBLIC_URL
        self.timeout = timeout

    def resolve(self, query: str, bias: Optional[Tuple[float, float]] = None) -> Optional[Dict]:
        params = {
            'format': 'jsonv2',
            'q': query,
            'limit': 1,
            'addressdetails': 1,
            'countrycodes': 'tw',
            'bounded': 1,
            'viewbox': TAIWAN_VIEWBOX,
        }
        headers = {
            'User-Agent': self.user_agent,
            'Accept-Language': 'zh-TW,zh;q=0.9',
        }

        data = _http_get_json(self.base_url, params, headers=headers, timeout=self.timeout)
        if not isinstance(data, list) or not data:
            return None

        best = data[0]
        try:
            lat, lng = float(best['lat']), float(best['lon'])
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Nominatim 回應缺少座標: {query}")
            return None
        return {
            'lat': lat,
            'lng': lng,
            'confidence': None,
            'formatted': best.get('display_name'),
            'components': _region_components(best.get('address')),
        }
