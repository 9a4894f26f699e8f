"""
address_utils.py — 機構地址正規化 / 中文數字共用模組
=====================================================

提供:
  - 全形/半形轉換
  - 中文數字（一～九十九）→ 阿拉伯數字
  - 臺/台 異體字折疊與雙形展開
  - 機構地址正規化（郵遞區號、括號、分號備註、樓層、門牌截斷、國名）
  - 查詢字串限長
"""

import re
import urllib.parse
from typing import List, Optional

# ============================================================
# 常數
# ============================================================

FULLWIDTH_DIGITS = '０１２３４５６７８９'
HALFWIDTH_DIGITS = '0123456789'

# 1～9（「兩」視同「二」）
ZH_DIGITS = {
    '一': 1, '二': 2, '兩': 2, '三': 3, '四': 4,
    '五': 5, '六': 6, '七': 7, '八': 8, '九': 9,
}

# 一～九十九 的文法：[十位]十[個位] 或 單一數字
_ZH_1_TO_99 = re.compile(r'^([一二兩三四五六七八九])?十([一二三四五六七八九])?$')

ZH_NUMERAL_CHARS = '一二兩三四五六七八九十'

# 地址可接受的最大長度（以 URL 編碼後的位元組數計）
MAX_QUERY_BYTES = 512

_HTML_ENTITY = re.compile(r'&[^;；\s]{1,10}[;；]')
_POSTAL_PREFIX = re.compile(r'^\s*\d{3,5}(?![\d號巷弄樓段之-])\s*[,:]?\s*')
_PARENTHETICAL = re.compile(r'（[^）]*）|\([^)]*\)')
_FLOOR_SUFFIX = re.compile(
    r'(地下室|地下[一二三四五六七八九\d]*樓?|[Bb]\d+樓?'
    r'|[一二三四五六七八九十百\d]+(?:樓|[Ff])(?:之\d+)?'
    r'|之?\d+室|室\d+|\d+層).*$'
)
_COUNTRY_NAME = re.compile(
    r'中華民國|(?:台|臺)灣省|(?:台|臺)灣(?!大道|路|街)'
    r'|Republic\s*of\s*China|R\.?O\.?C\.?|Taiwan',
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r'\s+')


# ============================================================
# 全形半形轉換
# ============================================================

def fullwidth_to_halfwidth(text: str) -> str:
    """全形字元轉半形（涵蓋 ASCII 全形區間 + 全形空白）"""
    result = []
    for ch in text:
        code = ord(ch)
        if 0xFF01 <= code <= 0xFF5E:
            result.append(chr(code - 0xFEE0))
        elif code == 0x3000:
            result.append(' ')
        else:
            result.append(ch)
    return ''.join(result)


# ============================================================
# 中文數字
# ============================================================

def parse_zh_1_to_99(text: str) -> Optional[int]:
    """
    一～九十九 的中文數字轉整數。

    只接受地址常見的受限文法，不是通用中文數字解析器:
      '三' → 3, '十' → 10, '十二' → 12, '二十' → 20, '九十九' → 99

    無法解析（含 '零'、'一百'、'二二八' 等）回傳 None。
    """
    if not text:
        return None
    text = text.strip()
    if text in ZH_DIGITS:
        return ZH_DIGITS[text]
    m = _ZH_1_TO_99.match(text)
    if not m:
        return None
    tens = ZH_DIGITS[m.group(1)] if m.group(1) else 1
    ones = ZH_DIGITS[m.group(2)] if m.group(2) else 0
    return tens * 10 + ones


# ============================================================
# 臺/台 異體字
# ============================================================

def fold_tai(text: str) -> str:
    """統一為「臺」，比對用"""
    return (text or '').replace('台', '臺')


def tai_variants(text: str) -> List[str]:
    """
    產生「臺/台」雙形（保留原字串在最前面）

    '台南市永康區' → ['台南市永康區', '臺南市永康區']
    """
    out = [text]
    for v in (text.replace('台', '臺'), text.replace('臺', '台')):
        if v not in out:
            out.append(v)
    return out


# ============================================================
# 地址正規化
# ============================================================

def strip_parentheticals(text: str) -> str:
    """去除全形/半形括號內的補充說明"""
    return _PARENTHETICAL.sub('', text)


def strip_floor_suffix(text: str) -> str:
    """去除樓層/地下室/室別等後綴（從第一個樓層標記到字串結尾）"""
    return _FLOOR_SUFFIX.sub('', text)


def truncate_at_house_number(text: str) -> str:
    """
    只保留到「號」為止

    '中山路100號之3室' → '中山路100號'
    找不到「號」時原樣回傳。
    """
    i = text.find('號')
    return text[:i + 1] if i >= 0 else text


def strip_country_name(text: str) -> str:
    """去除國名（保留「臺灣大道」這類道路名）"""
    return _COUNTRY_NAME.sub('', text)


def normalize(address) -> str:
    """
    機構地址正規化（純函式，不會拋出例外）

    依序:
      1. 去除 HTML entity、全形→半形、「巿」→「市」、開頭郵遞區號
      2. 去除括號說明
      3. 分號後一律視為備註，截斷
      4. 去除樓層/地下室/室別
      5. 截斷到「號」為止
      6. 去除空白與國名

    '330桃園市桃園區中正路100號5樓（近火車站）;地下1樓' → '桃園市桃園區中正路100號'
    """
    if address is None:
        return ''
    addr = str(address)

    addr = _HTML_ENTITY.sub('', addr)
    addr = fullwidth_to_halfwidth(addr)
    addr = addr.replace('巿', '市')
    addr = _POSTAL_PREFIX.sub('', addr)

    addr = strip_parentheticals(addr)
    addr = addr.split(';')[0]
    addr = strip_floor_suffix(addr)
    addr = truncate_at_house_number(addr)

    addr = _WHITESPACE.sub('', addr)
    addr = strip_country_name(addr)
    return addr.strip(',、。')


# ============================================================
# 限長
# ============================================================

def encoded_length(text: str) -> int:
    """URL 編碼後的位元組數"""
    return len(urllib.parse.quote(text, safe=''))


def clamp_query(query: str, max_bytes: int = MAX_QUERY_BYTES) -> str:
    """
    限制查詢長度（避免 query too long）

    超長時從尾端截斷而不是丟棄，保證病態輸入也能產生查詢。
    """
    if encoded_length(query) <= max_bytes:
        return query
    out = []
    size = 0
    for ch in query:
        n = encoded_length(ch)
        if size + n > max_bytes:
            break
        out.append(ch)
        size += n
    return ''.join(out)
