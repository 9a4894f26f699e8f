"""
地圖資料服務器 API 測試（Flask test client）
"""

import json

import pytest

from clinic_geocoder.models import ResolvedLocation
from clinic_geocoder.server import create_app

ROWS = [
    {'org_name': '仁愛診所', 'address': '桃園市中壢區中山路100號', 'county': '桃園市',
     'latitude': 24.95, 'longitude': 121.22, 'source': 'primary-provider', 'approximation_level': None},
    {'org_name': '大學診所', 'address': '台南市東區大學路1號', 'county': '台南市',
     'latitude': 22.99, 'longitude': 120.22, 'source': 'static-centroid', 'approximation_level': 'region-table'},
    {'org_name': '某某診所', 'address': '', 'county': '臺南市',
     'latitude': None, 'longitude': None, 'source': None, 'miss_reason': 'missing-address'},
]


@pytest.fixture
def client(tmp_path, cache):
    path = tmp_path / 'clinics.json'
    path.write_text(json.dumps({'county': '全台灣', 'total': 3, 'rows': ROWS}, ensure_ascii=False),
                    encoding='utf-8')
    cache.upsert('k', ResolvedLocation(latitude=24.95, longitude=121.22, source='primary-provider'))
    app = create_app(str(path), cache.db_path)
    app.config['TESTING'] = True
    return app.test_client()


def test_list_clinics(client):
    data = client.get('/api/clinics').get_json()
    assert data['success'] is True
    assert data['count'] == 3


def test_filter_by_county_folds_tai(client):
    data = client.get('/api/clinics?county=臺南市').get_json()
    assert [r['org_name'] for r in data['data']] == ['大學診所', '某某診所']


def test_filter_resolved_only(client):
    data = client.get('/api/clinics?resolved=1').get_json()
    assert [r['org_name'] for r in data['data']] == ['仁愛診所', '大學診所']


def test_stats(client):
    stats = client.get('/api/stats').get_json()['stats']
    assert stats['total'] == 3
    assert stats['misses'] == 1
    assert stats['by_source'] == {'primary-provider': 1, 'static-centroid': 1}
    assert stats['cache']['total'] == 1


def test_config(client, monkeypatch):
    monkeypatch.setenv('GOOGLE_MAPS_API_KEY', 'MAPS-KEY')
    assert client.get('/api/config').get_json() == {'google_maps_api_key': 'MAPS-KEY'}


def test_missing_data_file(tmp_path):
    app = create_app(str(tmp_path / 'nope.json'))
    resp = app.test_client().get('/api/clinics')
    assert resp.status_code == 404
    assert resp.get_json()['success'] is False
