"""
config.py — 執行設定（.env → 環境變數 → CLI 參數，後者優先）
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    """設定錯誤（例如缺少 API key）"""


_TRUE = {'1', 'true', 'yes', 'on', 'y'}


def env_flag(name: str, default: bool = False) -> bool:
    """'true' / '1' / 'yes' → True"""
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in _TRUE


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} 必須是數字: {value!r}") from e


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} 必須是整數: {value!r}") from e


@dataclass(frozen=True)
class Settings:
    opencage_api_key: str = ''
    nominatim_user_agent: str = 'clinic-geocoder/1.0'
    input_path: str = 'out/taiwan_merged_clean.json'
    output_path: str = 'public/clinics.json'
    cache_path: str = 'data/geocode_cache.db'
    use_nominatim: bool = False
    min_interval: float = 1.2
    retries: int = 3
    backoff: float = 1.5
    debug: bool = False
    retry_approximate: bool = False

    def require_api_key(self):
        if not self.opencage_api_key:
            raise ConfigError("缺少 OPENCAGE_API_KEY（請設定於 .env 或環境變數）")


def load_settings(dotenv_path: Optional[str] = None, **overrides) -> Settings:
    """
    讀取設定

    overrides 為 CLI 參數；值為 None 的項目不覆蓋環境變數。
    """
    load_dotenv(dotenv_path)
    settings = Settings(
        opencage_api_key=os.getenv('OPENCAGE_API_KEY', ''),
        nominatim_user_agent=os.getenv('NOMINATIM_USER_AGENT') or Settings.nominatim_user_agent,
        input_path=os.getenv('GEOCODE_IN') or Settings.input_path,
        output_path=os.getenv('GEOCODE_OUT') or Settings.output_path,
        cache_path=os.getenv('GEOCODE_CACHE') or Settings.cache_path,
        use_nominatim=env_flag('GEOCODE_NOMINATIM'),
        min_interval=_env_float('GEOCODE_MIN_INTERVAL', Settings.min_interval),
        retries=_env_int('GEOCODE_RETRIES', Settings.retries),
        backoff=_env_float('GEOCODE_BACKOFF', Settings.backoff),
        debug=env_flag('GEOCODE_DEBUG'),
    )
    known = {f.name for f in fields(Settings)}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigError(f"未知的設定項目: {', '.join(sorted(unknown))}")
    changes = {k: v for k, v in overrides.items() if v is not None}
    return replace(settings, **changes) if changes else settings
