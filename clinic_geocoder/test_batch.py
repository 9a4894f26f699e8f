"""
批次驅動 / CLI 測試
"""

import csv
import json

import pytest

from clinic_geocoder import batch
from clinic_geocoder.cache import CacheWriteError
from clinic_geocoder.conftest import StubProvider, make_hit
from clinic_geocoder.models import LOCATION_FIELDS, ResolvedLocation

ROWS = [
    {'org_name': '仁愛診所', 'address': '桃園市中壢區中山路100號', 'phone': '03-4221234'},
    {'org_name': '博愛診所', 'address': '', 'phone': '03-4225678'},
    {'org_name': '大學診所', 'address': '台南市東區大學路1號', 'county': '臺南市'},
]


def write_json(path, data):
    path.write_text(json.dumps(data, ensure_ascii=False), encoding='utf-8')
    return str(path)


class FakeGeocoder:
    def __init__(self, fail_on=None, error=RuntimeError):
        self.fail_on = fail_on
        self.error = error
        self.provider_calls = 0

    def resolve(self, record):
        if record.raw_address == self.fail_on:
            raise self.error('boom')
        if not record.raw_address:
            return ResolvedLocation.miss('missing-address')
        return ResolvedLocation(latitude=24.95, longitude=121.22, source='primary-provider',
                                query_used=record.raw_address)


def test_load_records_wrapper_and_array(tmp_path):
    rows, wrapper = batch.load_records(write_json(tmp_path / 'a.json', {'county': '全台灣', 'total': 3, 'rows': ROWS}))
    assert rows == ROWS
    assert wrapper == {'county': '全台灣', 'total': 3}

    rows, wrapper = batch.load_records(write_json(tmp_path / 'b.json', ROWS))
    assert rows == ROWS
    assert wrapper is None


def test_load_records_rejects_unknown_shape(tmp_path):
    with pytest.raises(ValueError):
        batch.load_records(write_json(tmp_path / 'c.json', {'foo': 1}))


def test_resolve_rows_annotates_every_row():
    out = batch.resolve_rows(FakeGeocoder(), ROWS, progress=False)
    assert len(out) == len(ROWS)
    for row in out:
        for key in LOCATION_FIELDS:
            assert key in row, key
    assert out[0]['source'] == 'primary-provider'
    assert out[0]['phone'] == '03-4221234'
    assert out[1]['latitude'] is None and out[1]['miss_reason'] == 'missing-address'


def test_resolve_rows_isolates_record_errors():
    out = batch.resolve_rows(FakeGeocoder(fail_on='桃園市中壢區中山路100號'), ROWS, progress=False)
    assert out[0]['source'] is None
    assert out[0]['latitude'] is None
    assert out[0]['miss_reason'] == 'error: boom'
    assert out[2]['source'] == 'primary-provider'


def test_resolve_rows_non_object_row_does_not_stop_batch():
    out = batch.resolve_rows(FakeGeocoder(), [None, ROWS[0], 'x'], progress=False)
    assert out[0]['latitude'] is None and out[0]['longitude'] is None
    assert out[0]['source'] is None
    assert out[0]['miss_reason'].startswith('error: ')
    assert set(LOCATION_FIELDS) <= set(out[0])
    assert out[1]['source'] == 'primary-provider'
    assert out[2]['miss_reason'].startswith('error: ')


def test_resolve_rows_cache_failure_is_fatal():
    with pytest.raises(CacheWriteError):
        batch.resolve_rows(FakeGeocoder(fail_on='桃園市中壢區中山路100號', error=CacheWriteError),
                           ROWS, progress=False)


def test_resolve_rows_only_selected_indexes():
    out = batch.resolve_rows(FakeGeocoder(), ROWS, indexes=[2], progress=False)
    assert 'source' not in out[0]
    assert out[2]['source'] == 'primary-provider'


def test_write_output_keeps_wrapper(tmp_path):
    path = tmp_path / 'public' / 'clinics.json'
    batch.write_output(str(path), ROWS[:2], {'county': '全台灣', 'total': 99})
    data = json.loads(path.read_text(encoding='utf-8'))
    assert data['county'] == '全台灣'
    assert data['total'] == 2
    assert data['rows'] == ROWS[:2]
    assert not (tmp_path / 'public' / 'clinics.json.tmp').exists()


def test_write_output_failure(tmp_path):
    blocker = tmp_path / 'file'
    blocker.write_text('x')
    with pytest.raises(batch.OutputWriteError):
        batch.write_output(str(blocker / 'out.json'), ROWS)


def test_write_csv(tmp_path):
    rows = batch.resolve_rows(FakeGeocoder(), ROWS, progress=False)
    path = tmp_path / 'clinics.csv'
    batch.write_csv(str(path), rows)

    assert path.read_bytes().startswith(b'\xef\xbb\xbf')
    with open(path, encoding='utf-8-sig', newline='') as f:
        reader = list(csv.DictReader(f))
    assert len(reader) == 3
    header = list(reader[0].keys())
    assert header[:3] == ['org_name', 'address', 'phone']
    assert header[-len(LOCATION_FIELDS):] == list(LOCATION_FIELDS)
    assert reader[0]['source'] == 'primary-provider'
    assert reader[1]['latitude'] == ''
    assert reader[1]['miss_reason'] == 'missing-address'


def test_summarize():
    rows = batch.resolve_rows(FakeGeocoder(), ROWS, progress=False)
    summary = batch.summarize(rows)
    assert summary['total'] == 3
    assert summary['misses'] == 1
    assert summary['by_source'] == {'primary-provider': 2}


# ---------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------

@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv('OPENCAGE_API_KEY', 'TEST-KEY')
    for name in ('GEOCODE_IN', 'GEOCODE_OUT', 'GEOCODE_CACHE', 'GEOCODE_NOMINATIM', 'GEOCODE_DEBUG'):
        monkeypatch.delenv(name, raising=False)

    primary = StubProvider(lambda q: make_hit(24.9577, 121.2251, '桃園市') if '桃園市' in q else None)
    monkeypatch.setattr(batch, 'OpenCageProvider', lambda key: primary)

    paths = {
        'in': write_json(tmp_path / 'in.json', {'county': '全台灣', 'total': 3, 'rows': ROWS}),
        'out': str(tmp_path / 'out.json'),
        'cache': str(tmp_path / 'cache.db'),
    }
    args = ['--in', paths['in'], '--out', paths['out'], '--cache', paths['cache'], '--min-interval', '0']
    return primary, paths, args


def test_main_resolves_and_writes(cli_env, tmp_path):
    primary, paths, args = cli_env
    csv_path = str(tmp_path / 'out.csv')
    assert batch.main(args + ['--csv', csv_path]) == 0

    data = json.loads(open(paths['out'], encoding='utf-8').read())
    assert data['total'] == 3
    rows = data['rows']
    assert rows[0]['source'] == 'primary-provider'
    assert rows[1]['miss_reason'] == 'missing-address'
    assert rows[2]['source'] == 'static-centroid'
    for row in rows:
        for key in LOCATION_FIELDS:
            assert key in row


def test_main_missing_api_key(cli_env, monkeypatch):
    _, _, args = cli_env
    monkeypatch.setenv('OPENCAGE_API_KEY', '')
    assert batch.main(args) == 2


def test_main_with_previous_results(cli_env, tmp_path):
    primary, paths, args = cli_env
    prev = [dict(ROWS[0], latitude=25.0, longitude=121.0, source='primary-provider')]
    prev_path = write_json(tmp_path / 'prev.json', {'county': '全台灣', 'total': 1, 'rows': prev})
    diff_path = tmp_path / 'new.json'

    assert batch.main(args + ['--prev', prev_path, '--diff', str(diff_path)]) == 0

    rows = json.loads(open(paths['out'], encoding='utf-8').read())['rows']
    assert [r['org_name'] for r in rows] == ['仁愛診所', '博愛診所', '大學診所']
    assert (rows[0]['latitude'], rows[0]['longitude']) == (25.0, 121.0)
    assert not any('桃園市' in q for q in primary.queries)

    diff = json.loads(diff_path.read_text(encoding='utf-8'))
    assert [r['org_name'] for r in diff] == ['博愛診所', '大學診所']


def test_main_cache_maintenance(cli_env, tmp_path, capsys):
    _, paths, _ = cli_env
    legacy = write_json(tmp_path / 'legacy.json', {'桃園市中壢區中山路100號': [24.95, 121.22]})
    assert batch.main(['--cache', paths['cache'], '--import-cache', legacy]) == 0
    assert batch.main(['--cache', paths['cache'], '--stats']) == 0
    assert '快取總數' in capsys.readouterr().out

    exported = tmp_path / 'exported.json'
    assert batch.main(['--cache', paths['cache'], '--export-cache', str(exported)]) == 0
    assert '桃園市中壢區中山路100號' in json.loads(exported.read_text(encoding='utf-8'))


def test_main_keeps_going_after_null_row(cli_env, tmp_path):
    _, paths, args = cli_env
    write_json(tmp_path / 'in.json', [None, ROWS[0]])
    assert batch.main(args) == 0

    rows = json.loads(open(paths['out'], encoding='utf-8').read())
    assert rows[0]['latitude'] is None
    assert rows[0]['miss_reason'].startswith('error: ')
    assert rows[1]['source'] == 'primary-provider'
