"""
Clinic Geocoder - 機構地址轉座標核心引擎
========================================

一筆雜亂的機構地址 → WGS84 經緯度（或明確的查無標記）。

退階策略（依序，第一個通過行政區驗證的結果勝出）:
  1. SQLite 快取（地址候選 → 錨點 key）
  2. 主要 provider（OpenCage，帶 proximity 偏好）
  3. 備援 provider（Nominatim，設定啟用時）
  4. 街道級：行政區 + 路名（approximation_level = street）
  5. 行政區級：縣市+區 → 縣市（approximation_level = admin）
  6. 縣市代表座標表（approximation_level = region-table）

使用方式:
    from clinic_geocoder.geocoder import TaiwanGeocoder

    gc = TaiwanGeocoder(primary=OpenCageProvider(key), cache=GeoCache('data/geocode_cache.db'))
    loc = gc.resolve(Record(raw_address="桃園市中壢區中山路100號"))
    print(loc.latitude, loc.longitude, loc.source)
"""

import logging
import time
from typing import Callable, List, Optional, Tuple

from clinic_geocoder.address_utils import clamp_query, normalize
from clinic_geocoder.cache import GeoCache
from clinic_geocoder.candidates import (
    CandidateQuery,
    admin_candidates,
    generate_candidates,
    street_candidates,
)
from clinic_geocoder.models import (
    APPROX_ADMIN,
    APPROX_REGION_TABLE,
    APPROX_STREET,
    MISS_MISSING_ADDRESS,
    MISS_UNRESOLVABLE,
    SOURCE_ADMIN,
    SOURCE_CACHE,
    SOURCE_PRIMARY,
    SOURCE_SECONDARY,
    SOURCE_STATIC,
    SOURCE_STREET,
    Record,
    ResolvedLocation,
)
from clinic_geocoder.providers import GeocodeProvider
from clinic_geocoder.region import (
    Region,
    canonical_region,
    extract_region,
    in_taiwan,
    region_centroid,
    region_matches,
)
from clinic_geocoder.resilience import BackoffPolicy, RateLimiter, call_with_retry

logger = logging.getLogger(__name__)


class TaiwanGeocoder:
    """
    機構地址退階解析器

    快取由呼叫端建立後傳入，整個批次只有這一個可變狀態。
    provider 呼叫一律經過同一個 RateLimiter 與 BackoffPolicy。
    """

    def __init__(self, primary: GeocodeProvider, cache: GeoCache,
                 secondary: Optional[GeocodeProvider] = None,
                 limiter: Optional[RateLimiter] = None,
                 policy: Optional[BackoffPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 retry_approximate: bool = False):
        """
        Args:
            primary: 主要 provider
            cache: 查詢結果快取
            secondary: 備援 provider（None = 停用第 3 層）
            limiter: 全域速率限制（預設 1.2 秒間隔）
            policy: 退避重試策略（預設 3 次、1.5 秒 × 次數）
            retry_approximate: 快取中的近似結果不採用，重新查 provider
        """
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.limiter = limiter or RateLimiter(sleep=sleep)
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self.retry_approximate = retry_approximate
        self.provider_calls = 0

    # ------------------------------------------------------------------
    # 單筆解析
    # ------------------------------------------------------------------

    def resolve(self, record: Record) -> ResolvedLocation:
        """
        解析一筆資料

        不會因地址格式拋出例外：無法解析時回傳 miss 標記。
        快取寫入失敗（CacheWriteError）照常往外拋。
        """
        if not (record.raw_address or '').strip():
            return ResolvedLocation.miss(MISS_MISSING_ADDRESS)

        normalized = normalize(record.raw_address)
        region = extract_region(normalized).with_expected(record.expected_region)
        expected = region.top_level
        bias = region_centroid(expected)
        anchor = clamp_query(normalized) if normalized else ''

        candidates = generate_candidates(record.raw_address, record.organization_name, region)
        logger.debug(f"candidates: {[c.text for c in candidates]}")

        # 1. 快取
        loc = self._from_cache([c.text for c in candidates] + [anchor], expected)
        if loc:
            return loc

        # 2. 主要 provider
        loc = self._try_provider(self.primary, candidates, expected, bias, SOURCE_PRIMARY)
        if loc:
            return loc

        # 3. 備援 provider
        if self.secondary is not None:
            loc = self._try_provider(self.secondary, candidates, expected, None, SOURCE_SECONDARY)
            if loc:
                return loc

        # 4. 街道級
        streets = street_candidates(record.raw_address, region)
        loc = self._try_fallback(self.primary, streets, expected, bias, SOURCE_STREET, APPROX_STREET)
        if not loc and self.secondary is not None:
            loc = self._try_fallback(self.secondary, streets, expected, None, SOURCE_STREET, APPROX_STREET)
        if loc:
            return self._remember(anchor, loc)

        # 5. 行政區級
        loc = self._try_fallback(self.primary, admin_candidates(region), expected, bias,
                                 SOURCE_ADMIN, APPROX_ADMIN)
        if loc:
            return self._remember(anchor, loc)

        # 6. 縣市代表座標
        loc = self._static_centroid(region)
        if loc:
            return self._remember(anchor, loc)

        return ResolvedLocation.miss(MISS_UNRESOLVABLE, candidates[0].text if candidates else anchor or None)

    # ------------------------------------------------------------------
    # 各層
    # ------------------------------------------------------------------

    def _accept(self, loc: Optional[ResolvedLocation], expected: str) -> bool:
        """座標有效、在台灣範圍內、且行政區與預期相符"""
        if loc is None or not loc.resolved:
            return False
        if not in_taiwan(loc.latitude, loc.longitude):
            return False
        return region_matches(expected, loc.formatted_address, loc.region_components)

    def _from_cache(self, keys: List[str], expected: str) -> Optional[ResolvedLocation]:
        for key in keys:
            if not key:
                continue
            cached = self.cache.get(key)
            if cached is None:
                continue
            if self.retry_approximate and cached.approximation_level is not None:
                continue
            if self._accept(cached, expected):
                return ResolvedLocation(
                    latitude=cached.latitude,
                    longitude=cached.longitude,
                    confidence=cached.confidence,
                    formatted_address=cached.formatted_address,
                    region_components=cached.region_components,
                    source=SOURCE_CACHE,
                    approximation_level=cached.approximation_level,
                    query_used=key,
                )
        return None

    def _call(self, provider: GeocodeProvider, query: str,
              bias: Optional[Tuple[float, float]]) -> Optional[dict]:
        self.provider_calls += 1
        use_bias = bias if getattr(provider, 'supports_proximity', False) else None
        return call_with_retry(
            lambda: provider.resolve(query, use_bias),
            self.limiter, self.policy, sleep=self._sleep,
            label=f"{getattr(provider, 'name', 'provider')}:{query}",
        )

    def _try_provider(self, provider: GeocodeProvider, candidates: List[CandidateQuery],
                      expected: str, bias, source: str) -> Optional[ResolvedLocation]:
        for cand in candidates:
            hit = self._call(provider, cand.text, bias)
            if not hit:
                continue
            loc = ResolvedLocation.from_hit(hit, source, cand.text)
            if not self._accept(loc, expected):
                logger.debug(f"行政區不符，略過: {cand.text} → {loc.formatted_address}")
                continue
            self.cache.upsert(cand.text, loc)
            return loc
        return None

    def _try_fallback(self, provider: GeocodeProvider, candidates: List[CandidateQuery],
                      expected: str, bias, source: str, level: str) -> Optional[ResolvedLocation]:
        """退階層：每個候選先查快取，再查 provider"""
        for cand in candidates:
            cached = self.cache.get(cand.text)
            if cached is not None and self._accept(cached, expected):
                return ResolvedLocation(
                    latitude=cached.latitude,
                    longitude=cached.longitude,
                    confidence=cached.confidence,
                    formatted_address=cached.formatted_address,
                    region_components=cached.region_components,
                    source=source,
                    approximation_level=level,
                    query_used=cand.text,
                )
            hit = self._call(provider, cand.text, bias)
            if not hit:
                continue
            loc = ResolvedLocation.from_hit(hit, source, cand.text, approximation_level=level)
            if not self._accept(loc, expected):
                continue
            self.cache.upsert(cand.text, loc)
            return loc
        return None

    @staticmethod
    def _static_centroid(region: Region) -> Optional[ResolvedLocation]:
        if not region.top_level:
            return None
        centroid = region_centroid(region.top_level)
        if centroid is None:
            return None
        name = canonical_region(region.top_level)
        return ResolvedLocation(
            latitude=centroid[0],
            longitude=centroid[1],
            formatted_address=name,
            region_components={'region': name},
            source=SOURCE_STATIC,
            approximation_level=APPROX_REGION_TABLE,
            query_used=name,
        )

    def _remember(self, anchor: str, loc: ResolvedLocation) -> ResolvedLocation:
        """退階結果也以錨點 key（正規化地址）存入快取"""
        if anchor and anchor != loc.query_used:
            self.cache.upsert(anchor, loc)
        return loc
