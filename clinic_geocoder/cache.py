"""
cache.py — 查詢結果 SQLite 永久快取

key = 正規化後的候選查詢字串，value = ResolvedLocation（不含 query_used，即 key 本身）。
每次 upsert 都是獨立 commit 的交易：中斷後重跑可直接沿用已解析的結果，
寫入中途當機也不會破壞既有資料（SQLite journal）。
"""

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Dict, Optional

from clinic_geocoder.models import ResolvedLocation
from clinic_geocoder.region import in_taiwan

logger = logging.getLogger(__name__)


class CacheWriteError(Exception):
    """快取寫入失敗（整個批次中止，避免悄悄遺失已解析的資料）"""


class GeoCache:
    """
    SQLite 永久快取

    表結構:
        geocode_cache(
            address_key TEXT PRIMARY KEY,  -- 候選查詢字串
            lat REAL, lng REAL,            -- WGS84
            confidence REAL,               -- provider 分數
            formatted TEXT,                -- provider 格式化地址
            components TEXT,               -- 行政區欄位 (JSON)
            source TEXT,                   -- 來源層
            level TEXT,                    -- 近似等級 (NULL = 門牌級)
            created_at TIMESTAMP
        )
    """

    def __init__(self, cache_db_path: str):
        self.db_path = str(cache_db_path)
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._init_db()

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        con = self._connect()
        try:
            con.execute("""
                CREATE TABLE IF NOT EXISTS geocode_cache (
                    address_key TEXT PRIMARY KEY,
                    lat REAL NOT NULL,
                    lng REAL NOT NULL,
                    confidence REAL,
                    formatted TEXT,
                    components TEXT,
                    source TEXT,
                    level TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            con.execute("""
                CREATE INDEX IF NOT EXISTS idx_geocache_level
                ON geocode_cache(level)
            """)
            con.commit()
        finally:
            con.close()

    @staticmethod
    def _row_to_location(row) -> ResolvedLocation:
        lat, lng, confidence, formatted, components, source, level = row
        return ResolvedLocation(
            latitude=lat,
            longitude=lng,
            confidence=confidence,
            formatted_address=formatted,
            region_components=json.loads(components) if components else {},
            source=source,
            approximation_level=level,
        )

    def get(self, address_key: str) -> Optional[ResolvedLocation]:
        """查詢單一 key"""
        con = self._connect()
        try:
            row = con.execute(
                "SELECT lat, lng, confidence, formatted, components, source, level "
                "FROM geocode_cache WHERE address_key = ?",
                (address_key,)
            ).fetchone()
        finally:
            con.close()
        return self._row_to_location(row) if row else None

    def load(self) -> Dict[str, ResolvedLocation]:
        """讀出全部快取 {key: ResolvedLocation}"""
        con = self._connect()
        try:
            rows = con.execute(
                "SELECT address_key, lat, lng, confidence, formatted, components, source, level "
                "FROM geocode_cache"
            ).fetchall()
        finally:
            con.close()
        return {r[0]: self._row_to_location(r[1:]) for r in rows}

    def upsert(self, address_key: str, location: ResolvedLocation):
        """
        寫入單一快取並立即 commit

        Raises:
            CacheWriteError: 任何 SQLite 寫入錯誤
        """
        if not location.resolved:
            raise ValueError("只能快取已解析的結果")
        try:
            con = self._connect()
            try:
                con.execute(
                    "INSERT OR REPLACE INTO geocode_cache "
                    "(address_key, lat, lng, confidence, formatted, components, source, level) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (address_key, location.latitude, location.longitude, location.confidence,
                     location.formatted_address,
                     json.dumps(location.region_components or {}, ensure_ascii=False),
                     location.source, location.approximation_level)
                )
                con.commit()
            finally:
                con.close()
        except sqlite3.Error as e:
            raise CacheWriteError(f"快取寫入失敗 {self.db_path}: {e}") from e

    def import_json_cache(self, json_path: str) -> int:
        """
        匯入既有的 JSON 快取

        支援兩種格式:
          {"查詢字串": {"lat":..,"lng":..,"confidence":..,"formatted":..,"source":..}, ...}
          {"查詢字串": [lat, lng], ...}
        台灣範圍外的座標略過。
        """
        if not os.path.exists(json_path):
            logger.warning(f"JSON cache not found: {json_path}")
            return 0

        with open(json_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            logger.warning(f"JSON cache is not an object, skipped: {json_path}")
            return 0

        count = 0
        for key, value in data.items():
            if isinstance(value, dict):
                lat, lng = value.get('lat'), value.get('lng')
                confidence = value.get('confidence')
                formatted = value.get('formatted')
                components = value.get('components') or {}
                level = value.get('level')
                source = value.get('source') or 'json_import'
            elif isinstance(value, (list, tuple)) and len(value) >= 2:
                lat, lng = value[0], value[1]
                confidence = formatted = level = None
                components = {}
                source = 'json_import'
            else:
                continue
            if not in_taiwan(lat, lng):
                continue
            self.upsert(key, ResolvedLocation(
                latitude=float(lat), longitude=float(lng),
                confidence=float(confidence) if confidence is not None else None,
                formatted_address=formatted, region_components=components,
                source=source, approximation_level=level,
            ))
            count += 1

        logger.info(f"Imported {count} entries from JSON cache")
        return count

    def export_json(self, json_path: str) -> int:
        """匯出為 JSON（先寫暫存檔再 rename）"""
        data = {}
        for key, loc in self.load().items():
            data[key] = {
                'lat': loc.latitude,
                'lng': loc.longitude,
                'confidence': loc.confidence,
                'formatted': loc.formatted_address,
                'components': loc.region_components,
                'source': loc.source,
                'level': loc.approximation_level,
            }
        path = Path(json_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + '.tmp')
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
        return len(data)

    @property
    def size(self) -> int:
        con = self._connect()
        try:
            return con.execute("SELECT COUNT(*) FROM geocode_cache").fetchone()[0]
        finally:
            con.close()

    def stats(self) -> Dict:
        """快取統計"""
        con = self._connect()
        try:
            total = con.execute("SELECT COUNT(*) FROM geocode_cache").fetchone()[0]
            by_level = dict(con.execute(
                "SELECT COALESCE(level, 'exact'), COUNT(*) FROM geocode_cache GROUP BY level"
            ).fetchall())
            by_source = dict(con.execute(
                "SELECT source, COUNT(*) FROM geocode_cache GROUP BY source"
            ).fetchall())
        finally:
            con.close()
        return {'total': total, 'by_level': by_level, 'by_source': by_source}
