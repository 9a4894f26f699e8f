"""
merge.py — 每日差異合併

今日爬蟲輸出 vs 昨日完整座標檔:
  - 以電話（只留數字）建索引，沒有電話時改用網址網域（org_url / map_url，去掉 www.）
  - 比對到且舊資料有座標 → 直接沿用座標欄位，不再查詢
  - 其餘列為「需要查詢」，交給解析器處理
最終輸出維持今日資料的順序。
"""

import logging
import re
import urllib.parse
from collections import defaultdict
from typing import Dict, List, NamedTuple, Optional

from clinic_geocoder.models import LOCATION_FIELDS

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r'\D')

# 舊格式欄位 → 目前欄位
_LEGACY_KEYS = {
    'latitude': 'lat',
    'longitude': 'lng',
    'formatted_address': 'formatted',
    'region_components': 'components',
    'approximation_level': 'approx',
    'query_used': 'usedQuery',
}


class MergePlan(NamedTuple):
    rows: List[Dict]      # 今日資料（已沿用座標的列已補上座標欄位）
    pending: List[int]    # 需要重新查詢的列索引


def normalize_phone(phone) -> str:
    """'(03) 422-1234' → '034221234'"""
    return _NON_DIGIT.sub('', str(phone or ''))


def domain_of(url) -> str:
    """'https://www.example.com.tw/a' → 'example.com.tw'；無法解析回傳空字串"""
    if not url:
        return ''
    try:
        host = urllib.parse.urlparse(str(url)).hostname or ''
    except ValueError:
        return ''
    return host[4:] if host.startswith('www.') else host


def _row_domain(row: Dict) -> str:
    return domain_of(row.get('org_url')) or domain_of(row.get('map_url'))


def pick_location(row: Dict) -> Dict:
    """只取座標相關欄位（相容舊格式 lat/lng/formatted...）"""
    out = {}
    for key in LOCATION_FIELDS:
        if key in row:
            out[key] = row[key]
        else:
            out[key] = row.get(_LEGACY_KEYS.get(key, key))
    return out


def has_location(row: Dict) -> bool:
    loc = pick_location(row)
    return loc['latitude'] is not None and loc['longitude'] is not None


def _first_located(rows: List[Dict]) -> Optional[Dict]:
    for r in rows:
        if has_location(r):
            return r
    return None


def plan_rows(today: List[Dict], previous: List[Dict]) -> MergePlan:
    """
    決定哪些列沿用舊座標、哪些需要查詢

    電話有值時只用電話比對；沒有電話才用網域。非物件的列一律列入待查詢。
    """
    by_phone = defaultdict(list)
    by_domain = defaultdict(list)
    for old in previous:
        if not isinstance(old, dict):
            continue
        phone = normalize_phone(old.get('phone'))
        if phone:
            by_phone[phone].append(old)
        domain = _row_domain(old)
        if domain:
            by_domain[domain].append(old)

    rows = []
    pending = []
    for i, row in enumerate(today):
        if not isinstance(row, dict):
            # 交給 resolve_rows 標記為錯誤列
            rows.append(row)
            pending.append(i)
            continue
        phone = normalize_phone(row.get('phone'))
        domain = _row_domain(row)
        match = None
        if phone and phone in by_phone:
            match = _first_located(by_phone[phone])
        elif domain and domain in by_domain:
            match = _first_located(by_domain[domain])

        if match is not None:
            merged = dict(row)
            merged.update(pick_location(match))
            rows.append(merged)
        else:
            rows.append(dict(row))
            pending.append(i)

    logger.info(f"今日 {len(today)} 筆 | 沿用舊座標 {len(today) - len(pending)} | 需要查詢 {len(pending)}")
    return MergePlan(rows, pending)
