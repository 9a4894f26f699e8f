"""
candidates.py — 查詢候選產生器
==============================

一筆雜亂地址 → 依「最精確 → 最寬鬆」排序、去重的查詢字串清單。

流程（每個地址片段）:
  1. 複合地址拆段（分號後丟棄；頓號/逗號/「號」後的連接詞分段）
  2. 片段缺行政區時補上整筆地址的縣市+區
  3. 段號、街巷弄前的中文數字 → 阿拉伯數字
  4. 35-1號 → 35之1號 / 35號
  5. 巷弄退階（去弄、去巷、兩者皆去）
  6. 道路(+段)+號 極簡形式
  7. 機構名稱前綴
  8. 臺/台 雙形
  9. 過濾非地址形狀、限長、去重

街道級/行政區級候選（degraded）另由 street_candidates() / admin_candidates() 產生，
只給退階層使用。
"""

import re
from typing import Iterable, List, NamedTuple, Optional

from clinic_geocoder.address_utils import (
    ZH_NUMERAL_CHARS,
    clamp_query,
    fullwidth_to_halfwidth,
    normalize,
    parse_zh_1_to_99,
    strip_parentheticals,
    tai_variants,
)
from clinic_geocoder.region import Region, extract_region

# 阿拉伯數字或中文數字（一～九十九）
_NUM = r'(?:\d+|[' + ZH_NUMERAL_CHARS + r']{1,3})'

_SEPARATORS = re.compile(r'[、，,。]')
# 連接詞只在「號」之後才視為分段，避免拆壞「和平東路」「及人街」這類路名
_CONNECTIVE_AFTER_NO = re.compile(r'(?<=號)(?:及|和|與|跟|或)')

_SECTION_ZH = re.compile(r'([' + ZH_NUMERAL_CHARS + r']{1,3})段')
_ORDINAL_ZH = re.compile(r'([' + ZH_NUMERAL_CHARS + r']{1,3})(?=[街巷弄])')
_HYPHEN_NO = re.compile(r'(\d+)-(\d+)號')
_ALLEY = re.compile(_NUM + r'(?:-\d+)?弄')
_LANE = re.compile(_NUM + r'(?:-\d+)?巷')
_ROAD_ONLY = re.compile(
    r'^(.+?(?:大道|道|路|街))(\d+段)?'
    r'(?:' + _NUM + r'(?:-\d+)?巷)?(?:' + _NUM + r'(?:-\d+)?弄)?'
    r'(\d+(?:[-之]\d+)?)號$'
)
_ROAD_NAME = re.compile(r'^(.+?(?:大道|道|路|街))(\d+段)?')
_ROAD_TOKEN = re.compile(r'路|街|巷|弄|道')
_WHITESPACE = re.compile(r'\s+')


class CandidateQuery(NamedTuple):
    """
    一個查詢候選

    level 為 None 代表完整地址形狀；'street' / 'admin' 為刻意退階的候選。
    """
    text: str
    level: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.level is not None


# ============================================================
# 小型文法（各自可獨立測試）
# ============================================================

def split_segments(address: str) -> List[str]:
    """
    複合地址拆段

    '桃園市中壢區中山路100號、中正路5號;舊址' → ['桃園市中壢區中山路100號', '中正路5號']
    """
    s = fullwidth_to_halfwidth(str(address or ''))
    s = strip_parentheticals(s)
    s = s.split(';')[0]
    s = _CONNECTIVE_AFTER_NO.sub('、', s)
    return [seg.strip() for seg in _SEPARATORS.split(s) if seg.strip()]


def section_arabic(text: str) -> str:
    """'中山路三段' → '中山路3段'（無法解析的數字保持原樣）"""
    def repl(m):
        n = parse_zh_1_to_99(m.group(1))
        return f'{n}段' if n is not None else m.group(0)
    return _SECTION_ZH.sub(repl, text)


def ordinal_arabic(text: str) -> str:
    """街/巷/弄 前的中文數字轉阿拉伯數字：'十二巷' → '12巷'"""
    def repl(m):
        n = parse_zh_1_to_99(m.group(1))
        return str(n) if n is not None else m.group(0)
    return _ORDINAL_ZH.sub(repl, text)


def hyphen_variants(text: str) -> List[str]:
    """'35-1號' → ['35-1號', '35之1號', '35號']"""
    m = _HYPHEN_NO.search(text)
    if not m:
        return [text]
    a, b = m.group(1), m.group(2)
    return [
        text,
        _HYPHEN_NO.sub(f'{a}之{b}號', text, count=1),
        _HYPHEN_NO.sub(f'{a}號', text, count=1),
    ]


def lane_alley_variants(text: str) -> List[str]:
    """
    巷弄退階：原字串、去弄、去巷、兩者皆去

    只處理有門牌號的字串；退階後仍以門牌號為錨點。
    """
    out = [text]
    if '號' not in text:
        return out
    no_alley = _ALLEY.sub('', text, count=1)
    no_lane = _LANE.sub('', text, count=1)
    no_both = _LANE.sub('', no_alley, count=1)
    for v in (no_alley, no_lane, no_both):
        if v not in out:
            out.append(v)
    return out


def strip_region_prefix(text: str) -> str:
    """去除開頭的縣市/區鄉鎮市"""
    prefix = extract_region(text).prefix
    return text[len(prefix):] if prefix and text.startswith(prefix) else text


def road_only(text: str) -> Optional[str]:
    """
    道路(+段)+號 極簡形式（不含行政區、巷、弄）

    '桃園市中壢區中山路100號'      → '中山路100號'
    '臺北市大安區信義路三段50巷2號' → '信義路3段2號'
    不符合文法時回傳 None。
    """
    t = strip_region_prefix(section_arabic(text))
    m = _ROAD_ONLY.match(t)
    if not m:
        return None
    return f'{m.group(1)}{m.group(2) or ""}{m.group(3)}號'


def looks_like_address(text: str) -> bool:
    """必須同時含道路類字（路/街/巷/弄/道）與「號」"""
    return bool(_ROAD_TOKEN.search(text)) and '號' in text


def with_region(segment: str, region: Region) -> str:
    """
    片段缺行政區時補上

    片段本身有縣市 → 原樣；只有區 → 補縣市；都沒有 → 補縣市+區
    """
    own = extract_region(segment)
    if own.top_level:
        return segment
    if own.second_level:
        return region.top_level + segment
    return region.prefix + segment


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for x in items:
        if x and x not in seen:
            seen.add(x)
            out.append(x)
    return out


def _resolve_region(address: str, region: Optional[Region]) -> Region:
    return region if region is not None else extract_region(normalize(address))


# ============================================================
# 候選產生
# ============================================================

def _segment_variants(segment: str, org: str, region: Region) -> List[str]:
    base = with_region(normalize(segment), region)
    if not base:
        return []

    bases = []
    for b1 in (base, section_arabic(base)):
        for b2 in (b1, ordinal_arabic(b1)):
            bases.append(b2)

    raw = []
    for b in _dedupe(bases):
        for h in hyphen_variants(b):
            for a in lane_alley_variants(h):
                raw.append(a)
                if org:
                    raw.append(org + a)
                ro = road_only(a)
                if not ro:
                    continue
                raw.append(ro)
                if org:
                    raw.append(org + ro)
                if region.top_level:
                    raw.append(region.top_level + ro)
                    if org:
                        raw.append(org + region.top_level + ro)
                if region.second_level:
                    raw.append(region.second_level + ro)
                    if org:
                        raw.append(org + region.second_level + ro)
                if region.prefix:
                    raw.append(region.prefix + ro)
    return raw


def generate_candidates(address: str, organization_name: str = '',
                        region: Optional[Region] = None) -> List[CandidateQuery]:
    """
    地址 → 排序、去重的完整地址形狀候選

    region 未指定時由整筆地址解析（片段可能省略開頭的行政區）。
    """
    region = _resolve_region(address, region)
    org = _WHITESPACE.sub('', organization_name or '')

    raw = []
    for seg in split_segments(address):
        raw.extend(_segment_variants(seg, org, region))

    out = []
    for c in _dedupe(raw):
        for t in tai_variants(c):
            if looks_like_address(t):
                out.append(clamp_query(t))
    return [CandidateQuery(q) for q in _dedupe(out)]


def street_candidates(address: str, region: Optional[Region] = None) -> List[CandidateQuery]:
    """
    街道級候選：行政區 + 路名(+段)，不含門牌

    由長到短排序；沒有行政區時不產生（只有路名太容易撞名）。
    """
    region = _resolve_region(address, region)
    if not region.known:
        return []

    raw = []
    for seg in split_segments(address):
        t = strip_region_prefix(section_arabic(normalize(seg)))
        m = _ROAD_NAME.match(t)
        if not m:
            continue
        road, sec = m.group(1), m.group(2) or ''
        for name in (road + sec, road):
            if region.second_level:
                raw.append(region.prefix + name)
            raw.append(region.top_level + name)

    texts = []
    for c in _dedupe(raw):
        texts.extend(tai_variants(c))
    texts = sorted(_dedupe(clamp_query(t) for t in texts), key=len, reverse=True)
    return [CandidateQuery(t, 'street') for t in texts]


def admin_candidates(region: Region) -> List[CandidateQuery]:
    """行政區級候選：縣市+區，再來縣市；只有區時用區"""
    if region.top_level:
        names = [region.prefix, region.top_level]
    elif region.second_level:
        names = [region.second_level]
    else:
        return []
    texts = []
    for n in _dedupe(names):
        texts.extend(tai_variants(n))
    return [CandidateQuery(t, 'admin') for t in _dedupe(texts)]
