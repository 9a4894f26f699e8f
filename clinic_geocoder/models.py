"""
models.py — 輸入資料列 / 解析結果

Record 由外部爬蟲或檔案產生，只讀；ResolvedLocation 為附加到資料列上的座標結果。
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

# 結果來源
SOURCE_CACHE = 'cache'
SOURCE_PRIMARY = 'primary-provider'
SOURCE_SECONDARY = 'secondary-provider'
SOURCE_STREET = 'street-fallback'
SOURCE_ADMIN = 'admin-fallback'
SOURCE_STATIC = 'static-centroid'

# 近似等級（None = 門牌級）
APPROX_STREET = 'street'
APPROX_ADMIN = 'admin'
APPROX_REGION_TABLE = 'region-table'

# 失敗原因
MISS_UNRESOLVABLE = 'unresolvable'
MISS_MISSING_ADDRESS = 'missing-address'

LOCATION_FIELDS = (
    'latitude', 'longitude', 'confidence', 'formatted_address',
    'region_components', 'source', 'approximation_level', 'query_used',
    'miss_reason',
)


@dataclass(frozen=True)
class Record:
    """一筆機構資料（名稱、原始地址、預期縣市），原始欄位保留在 fields"""
    raw_address: str
    organization_name: str = ''
    expected_region: str = ''
    fields: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Record':
        """
        從爬蟲輸出列建立 Record

        接受 org_name/organization_name、address/raw_address、county/expected_region
        """
        def pick(*keys):
            for k in keys:
                v = row.get(k)
                if v:
                    return str(v).strip()
            return ''

        return cls(
            raw_address=pick('raw_address', 'address'),
            organization_name=pick('organization_name', 'org_name'),
            expected_region=pick('expected_region', 'county'),
            fields=dict(row),
        )


@dataclass(frozen=True)
class ResolvedLocation:
    """
    一筆資料的座標結果

    source 為 None 時代表查無結果：經緯度必為 None，並以 miss_reason 說明原因。
    """
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    confidence: Optional[float] = None
    formatted_address: Optional[str] = None
    region_components: Optional[Dict[str, str]] = None
    source: Optional[str] = None
    approximation_level: Optional[str] = None
    query_used: Optional[str] = None
    miss_reason: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.source is not None

    @classmethod
    def from_hit(cls, hit: Dict[str, Any], source: str, query: str,
                 approximation_level: Optional[str] = None) -> 'ResolvedLocation':
        """provider 回傳 {lat, lng, confidence, formatted, components} → ResolvedLocation"""
        confidence = hit.get('confidence')
        return cls(
            latitude=float(hit['lat']),
            longitude=float(hit['lng']),
            confidence=float(confidence) if confidence is not None else None,
            formatted_address=hit.get('formatted'),
            region_components=dict(hit.get('components') or {}),
            source=source,
            approximation_level=approximation_level,
            query_used=query,
        )

    @classmethod
    def miss(cls, reason: str, query: Optional[str] = None) -> 'ResolvedLocation':
        return cls(miss_reason=reason, query_used=query)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def annotate(record: Record, location: ResolvedLocation) -> Dict[str, Any]:
    """原始欄位 + 座標欄位（座標欄位永遠存在，沒有值時為 None）"""
    row = dict(record.fields)
    row.update(location.to_dict())
    return row
