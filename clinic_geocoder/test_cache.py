"""
SQLite 快取測試
"""

import json
import sqlite3

import pytest

from clinic_geocoder.cache import CacheWriteError, GeoCache
from clinic_geocoder.models import ResolvedLocation


def _loc(**kw):
    base = dict(latitude=24.9577, longitude=121.2251, confidence=9.0,
                formatted_address='桃園市中壢區中山路100號',
                region_components={'city': '桃園市'}, source='primary-provider')
    base.update(kw)
    return ResolvedLocation(**base)


def test_upsert_and_get(cache):
    cache.upsert('桃園市中壢區中山路100號', _loc())
    got = cache.get('桃園市中壢區中山路100號')
    assert got == _loc()
    assert got.query_used is None
    assert cache.get('不存在') is None


def test_upsert_overwrites(cache):
    cache.upsert('k', _loc())
    cache.upsert('k', _loc(latitude=25.0, approximation_level='street'))
    assert cache.get('k').latitude == 25.0
    assert cache.get('k').approximation_level == 'street'
    assert cache.size == 1


def test_persists_across_instances(tmp_path):
    path = str(tmp_path / 'sub' / 'cache.db')
    GeoCache(path).upsert('k', _loc())
    assert GeoCache(path).load() == {'k': _loc()}


def test_upsert_rejects_miss(cache):
    with pytest.raises(ValueError):
        cache.upsert('k', ResolvedLocation.miss('unresolvable'))


def test_write_failure_raises_cache_write_error(cache):
    con = sqlite3.connect(cache.db_path)
    con.execute("DROP TABLE geocode_cache")
    con.commit()
    con.close()
    with pytest.raises(CacheWriteError):
        cache.upsert('k', _loc())


def test_import_json_cache(cache, tmp_path):
    path = tmp_path / 'geocode-cache.json'
    path.write_text(json.dumps({
        '桃園市中壢區中山路100號': {'lat': 24.95, 'lng': 121.22, 'confidence': 9,
                                  'formatted': '桃園市中壢區', 'source': 'opencage'},
        '臺北市信義路五段7號': [25.03, 121.56],
        '東京都': {'lat': 35.68, 'lng': 139.69},
        '壞資料': 'x',
    }, ensure_ascii=False), encoding='utf-8')

    assert cache.import_json_cache(str(path)) == 2
    assert cache.get('桃園市中壢區中山路100號').source == 'opencage'
    assert cache.get('臺北市信義路五段7號').source == 'json_import'
    assert cache.get('東京都') is None


def test_import_missing_file(cache, tmp_path):
    assert cache.import_json_cache(str(tmp_path / 'nope.json')) == 0


def test_import_array_file_is_skipped(cache, tmp_path):
    path = tmp_path / 'list.json'
    path.write_text(json.dumps([[24.95, 121.22]]), encoding='utf-8')
    assert cache.import_json_cache(str(path)) == 0
    assert cache.size == 0


def test_export_json(cache, tmp_path):
    cache.upsert('k', _loc(approximation_level='admin'))
    out = tmp_path / 'out' / 'cache.json'
    assert cache.export_json(str(out)) == 1
    data = json.loads(out.read_text(encoding='utf-8'))
    assert data['k']['lat'] == pytest.approx(24.9577)
    assert data['k']['level'] == 'admin'
    assert not (tmp_path / 'out' / 'cache.json.tmp').exists()


def test_stats(cache):
    cache.upsert('a', _loc())
    cache.upsert('b', _loc(source='street-fallback', approximation_level='street'))
    stats = cache.stats()
    assert stats['total'] == 2
    assert stats['by_level'] == {'exact': 1, 'street': 1}
    assert stats['by_source'] == {'primary-provider': 1, 'street-fallback': 1}
