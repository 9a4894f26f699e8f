"""
clinic_geocoder — 機構地址批次轉座標

地址正規化 → 候選查詢 → 多層退階（快取 / OpenCage / Nominatim / 街道 / 行政區 / 縣市代表座標）
"""

__version__ = '1.0.0'
