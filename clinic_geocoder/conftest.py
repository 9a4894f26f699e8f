"""
測試共用 fixture：不連網的 stub provider、暫存快取、解析器工廠
"""

import pytest

from clinic_geocoder.cache import GeoCache
from clinic_geocoder.geocoder import TaiwanGeocoder
from clinic_geocoder.providers import GeocodeProvider
from clinic_geocoder.resilience import BackoffPolicy, RateLimiter


def make_hit(lat, lng, city, formatted=None, confidence=9):
    return {
        'lat': lat,
        'lng': lng,
        'confidence': confidence,
        'formatted': formatted or f'{city}某處',
        'components': {'city': city},
    }


class StubProvider(GeocodeProvider):
    """記錄每次呼叫；responder(query) 決定回傳"""

    def __init__(self, responder=None, name='stub', supports_proximity=True):
        self.responder = responder or (lambda query: None)
        self.name = name
        self.supports_proximity = supports_proximity
        self.calls = []

    def resolve(self, query, bias=None):
        self.calls.append((query, bias))
        return self.responder(query)

    @property
    def queries(self):
        return [q for q, _ in self.calls]


def _no_sleep(seconds):
    pass


@pytest.fixture
def stub_provider():
    return StubProvider


@pytest.fixture
def cache(tmp_path):
    return GeoCache(str(tmp_path / 'geocode_cache.db'))


@pytest.fixture
def make_geocoder(cache):
    def factory(primary, secondary=None, retry_approximate=False, geo_cache=None):
        return TaiwanGeocoder(
            primary=primary,
            cache=geo_cache or cache,
            secondary=secondary,
            limiter=RateLimiter(0, sleep=_no_sleep),
            policy=BackoffPolicy(3, 0),
            sleep=_no_sleep,
            retry_approximate=retry_approximate,
        )
    return factory
