"""
region.py — 行政區解析 / 驗證 / 縣市代表座標
=============================================

  - extract_region(): 對照縣市 / 鄉鎮市區表解析地址開頭的行政區，
    只接受實際存在的名稱（「中央市場路」不會被當成縣市）
  - region_matches(): 檢查 provider 回傳的行政區是否與預期縣市一致
  - region_centroid(): 縣市代表座標（proximity 偏好與最終備援共用）
"""

import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from clinic_geocoder.address_utils import fold_tai

# 台灣範圍（含金門、馬祖）
TAIWAN_LAT_RANGE = (20.0, 27.0)
TAIWAN_LNG_RANGE = (118.0, 123.0)

# 已升格縣（舊縣名 → 新市名）
_COUNTY_UPGRADE = {
    '桃園縣': '桃園市',
    '臺北縣': '新北市',
    '臺中縣': '臺中市',
    '臺南縣': '臺南市',
    '高雄縣': '高雄市',
}

# =====================================================================
# 縣市代表座標（縣市政府所在地附近）
# =====================================================================
REGION_CENTROIDS: Dict[str, Tuple[float, float]] = {
    '臺北市': (25.0375, 121.5637),
    '新北市': (25.0120, 121.4657),
    '桃園市': (24.9936, 121.3010),
    '臺中市': (24.1477, 120.6736),
    '臺南市': (22.9999, 120.2270),
    '高雄市': (22.6273, 120.3014),
    '基隆市': (25.1276, 121.7392),
    '新竹市': (24.8138, 120.9675),
    '新竹縣': (24.8387, 121.0177),
    '苗栗縣': (24.5602, 120.8214),
    '彰化縣': (24.0518, 120.5161),
    '南投縣': (23.9157, 120.6869),
    '雲林縣': (23.7092, 120.4313),
    '嘉義市': (23.4801, 120.4491),
    '嘉義縣': (23.4518, 120.2555),
    '屏東縣': (22.6727, 120.4880),
    '宜蘭縣': (24.7021, 121.7378),
    '花蓮縣': (23.9872, 121.6016),
    '臺東縣': (22.7583, 121.1444),
    '澎湖縣': (23.5711, 119.5793),
    '金門縣': (24.4493, 118.3767),
    '連江縣': (26.1602, 119.9517),
}

# =====================================================================
# 縣市 → 鄉鎮市區
# =====================================================================
_DISTRICTS_BY_REGION = {
    '臺北市': '松山區 信義區 大安區 中山區 中正區 大同區 萬華區 文山區 南港區 內湖區 士林區 北投區',
    '新北市': '板橋區 中和區 永和區 新莊區 三重區 蘆洲區 土城區 樹林區 鶯歌區 三峽區 汐止區 金山區 '
              '萬里區 淡水區 瑞芳區 貢寮區 平溪區 雙溪區 新店區 深坑區 石碇區 坪林區 烏來區 五股區 '
              '泰山區 林口區 八里區 石門區 三芝區',
    '桃園市': '桃園區 中壢區 平鎮區 八德區 楊梅區 蘆竹區 大溪區 龍潭區 龜山區 大園區 觀音區 新屋區 復興區',
    '臺中市': '中區 東區 南區 西區 北區 西屯區 南屯區 北屯區 豐原區 大里區 太平區 清水區 沙鹿區 大甲區 '
              '東勢區 梧棲區 烏日區 神岡區 大肚區 大雅區 后里區 霧峰區 潭子區 龍井區 外埔區 和平區 '
              '石岡區 大安區 新社區',
    '臺南市': '新營區 鹽水區 白河區 柳營區 後壁區 東山區 麻豆區 下營區 六甲區 官田區 大內區 佳里區 '
              '學甲區 西港區 七股區 將軍區 北門區 新化區 善化區 新市區 安定區 山上區 玉井區 楠西區 '
              '南化區 左鎮區 仁德區 歸仁區 關廟區 龍崎區 永康區 東區 南區 北區 安南區 安平區 中西區',
    '高雄市': '鳳山區 三民區 前鎮區 苓雅區 左營區 楠梓區 小港區 鼓山區 旗津區 鹽埕區 前金區 新興區 '
              '鳥松區 大社區 仁武區 大樹區 岡山區 路竹區 橋頭區 梓官區 彌陀區 永安區 湖內區 茄萣區 '
              '阿蓮區 田寮區 燕巢區 林園區 大寮區 旗山區 美濃區 內門區 杉林區 甲仙區 六龜區 桃源區 '
              '那瑪夏區 茂林區',
    '基隆市': '仁愛區 中正區 信義區 中山區 安樂區 暖暖區 七堵區',
    '新竹市': '東區 北區 香山區',
    '新竹縣': '竹北市 竹東鎮 新埔鎮 關西鎮 湖口鄉 新豐鄉 芎林鄉 橫山鄉 北埔鄉 寶山鄉 峨眉鄉 尖石鄉 五峰鄉',
    '苗栗縣': '苗栗市 頭份市 竹南鎮 後龍鎮 通霄鎮 苑裡鎮 卓蘭鎮 大湖鄉 公館鄉 銅鑼鄉 南庄鄉 頭屋鄉 '
              '三義鄉 西湖鄉 造橋鄉 三灣鄉 獅潭鄉 泰安鄉',
    '彰化縣': '彰化市 員林市 鹿港鎮 和美鎮 北斗鎮 溪湖鎮 田中鎮 二林鎮 線西鄉 伸港鄉 福興鄉 秀水鄉 '
              '花壇鄉 芬園鄉 大村鄉 埔鹽鄉 埔心鄉 永靖鄉 社頭鄉 二水鄉 田尾鄉 埤頭鄉 芳苑鄉 大城鄉 '
              '竹塘鄉 溪州鄉',
    '南投縣': '南投市 埔里鎮 草屯鎮 竹山鎮 集集鎮 名間鄉 鹿谷鄉 中寮鄉 魚池鄉 國姓鄉 水里鄉 信義鄉 仁愛鄉',
    '雲林縣': '斗六市 斗南鎮 虎尾鎮 西螺鎮 土庫鎮 北港鎮 莿桐鄉 林內鄉 古坑鄉 大埤鄉 崙背鄉 二崙鄉 '
              '麥寮鄉 臺西鄉 東勢鄉 褒忠鄉 四湖鄉 口湖鄉 水林鄉 元長鄉',
    '嘉義市': '東區 西區',
    '嘉義縣': '太保市 朴子市 布袋鎮 大林鎮 民雄鄉 溪口鄉 新港鄉 六腳鄉 東石鄉 義竹鄉 鹿草鄉 水上鄉 '
              '中埔鄉 竹崎鄉 梅山鄉 番路鄉 大埔鄉 阿里山鄉',
    '屏東縣': '屏東市 潮州鎮 東港鎮 恆春鎮 萬丹鄉 長治鄉 麟洛鄉 九如鄉 里港鄉 鹽埔鄉 高樹鄉 萬巒鄉 '
              '內埔鄉 竹田鄉 新埤鄉 枋寮鄉 新園鄉 崁頂鄉 林邊鄉 南州鄉 佳冬鄉 琉球鄉 車城鄉 滿州鄉 '
              '枋山鄉 霧臺鄉 瑪家鄉 泰武鄉 來義鄉 春日鄉 獅子鄉 牡丹鄉 三地門鄉',
    '宜蘭縣': '宜蘭市 羅東鎮 蘇澳鎮 頭城鎮 礁溪鄉 壯圍鄉 員山鄉 冬山鄉 五結鄉 三星鄉 大同鄉 南澳鄉',
    '花蓮縣': '花蓮市 鳳林鎮 玉里鎮 新城鄉 吉安鄉 壽豐鄉 光復鄉 豐濱鄉 瑞穗鄉 富里鄉 秀林鄉 萬榮鄉 卓溪鄉',
    '臺東縣': '臺東市 成功鎮 關山鎮 卑南鄉 大武鄉 太麻里鄉 東河鄉 長濱鄉 鹿野鄉 池上鄉 綠島鄉 延平鄉 '
              '海端鄉 達仁鄉 金峰鄉 蘭嶼鄉',
    '澎湖縣': '馬公市 湖西鄉 白沙鄉 西嶼鄉 望安鄉 七美鄉',
    '金門縣': '金城鎮 金湖鎮 金沙鎮 金寧鄉 烈嶼鄉 烏坵鄉',
    '連江縣': '南竿鄉 北竿鄉 莒光鄉 東引鄉',
}

# 鄉鎮市區 → 所屬縣市（東區、中山區等同名區對到多個縣市）
_DISTRICT_REGIONS: Dict[str, FrozenSet[str]] = {}
for _region, _names in _DISTRICTS_BY_REGION.items():
    for _name in _names.split():
        _DISTRICT_REGIONS[_name] = _DISTRICT_REGIONS.get(_name, frozenset()) | {_region}
del _region, _names, _name

# 縣轄市：樣式解析會把它當成第一層行政區，查代表座標時對回所屬縣
COUNTY_CITIES = {
    name: region
    for name, regions in _DISTRICT_REGIONS.items() if name.endswith('市')
    for region in regions
}


def is_known_region(name: str) -> bool:
    """是否為第一層行政區（縣市、舊縣名或縣轄市）"""
    key = canonical_region(name or '')
    return key in REGION_CENTROIDS or key in COUNTY_CITIES


def _district_regions(name: str, old_county: bool = False) -> FrozenSet[str]:
    key = fold_tai(name)
    if key in _DISTRICT_REGIONS:
        return _DISTRICT_REGIONS[key]
    # 升格前的鄉鎮市（桃園縣中壢市 → 中壢區）
    if old_county and key[-1:] in ('鄉', '鎮', '市'):
        return _DISTRICT_REGIONS.get(key[:-1] + '區', frozenset())
    return frozenset()


def _district_prefix(text: str, old_county: bool = False) -> str:
    """開頭的鄉鎮市區（長者優先）；不是實際存在的名稱時回傳空字串"""
    for n in (4, 3, 2):
        name = text[:n]
        if len(name) == n and _district_regions(name, old_county):
            return name
    return ''


def district_in(name: str, region: str) -> bool:
    """鄉鎮市區是否屬於該縣市（臺/台、舊縣名視為相同）"""
    return canonical_region(region) in _district_regions(name, old_county=True)


@dataclass(frozen=True)
class Region:
    """地址開頭的行政區（縣市 + 區鄉鎮市），未解析的層級為空字串"""
    top_level: str = ''
    second_level: str = ''

    @property
    def prefix(self) -> str:
        return self.top_level + self.second_level

    @property
    def known(self) -> bool:
        return bool(self.top_level)

    def with_expected(self, expected: str) -> 'Region':
        """
        以資料列提供的縣市為準

        地址解析出的縣市不同時（縣轄市、鄉鎮名寫在最前面），
        只保留落在該縣市內的區鄉鎮市。
        資料列的縣市無法辨識時，仍以地址解析結果為主。
        """
        expected = (expected or '').strip()
        if not expected:
            return self
        given = extract_region(expected)
        top = given.top_level or expected
        if not is_known_region(top):
            return self if self.top_level else Region(top, self.second_level)
        if canonical_region(self.top_level) == canonical_region(top):
            return Region(self.top_level, self.second_level or given.second_level)
        for name in (self.second_level, self.top_level):
            if name and district_in(name, top):
                return Region(top, name)
        return Region(top, given.second_level)


def extract_region(address: str) -> Region:
    """
    解析地址開頭的行政區

    '桃園市中壢區中山路100號' → Region('桃園市', '中壢區')
    '新竹縣竹北市光明六路1號' → Region('新竹縣', '竹北市')
    '中壢區中山路100號'       → Region('', '中壢區')
    '中央市場路1號'           → Region('', '')
    """
    if not address:
        return Region()
    s = address.strip()
    top = s[:3]
    if is_known_region(top):
        old_county = fold_tai(top) in _COUNTY_UPGRADE
        return Region(top, _district_prefix(s[3:], old_county))
    return Region('', _district_prefix(s))
def canonical_region(text: str) -> str:
    """折疊臺/台，並把舊縣名換成升格後的市名"""
    s = fold_tai(text)
    for old, new in _COUNTY_UPGRADE.items():
        s = s.replace(old, new)
    return s


def region_matches(expected_top: str, formatted: Optional[str] = None,
                   components: Optional[Dict[str, str]] = None) -> bool:
    """
    預期縣市是否出現在 provider 回傳的行政區欄位或格式化地址中

    臺/台 視為相同；沒有預期縣市時一律通過（無從比對）。
    """
    if not expected_top:
        return True
    target = canonical_region(expected_top)
    texts: Iterable[str] = [formatted or ''] + [str(v) for v in (components or {}).values()]
    haystack = '|'.join(canonical_region(t) for t in texts)
    return target in haystack


def region_centroid(name: str) -> Optional[Tuple[float, float]]:
    """縣市代表座標；縣轄市對回所屬縣"""
    if not name:
        return None
    key = canonical_region(name)
    if key in REGION_CENTROIDS:
        return REGION_CENTROIDS[key]
    county = COUNTY_CITIES.get(key)
    return REGION_CENTROIDS.get(county) if county else None


def in_taiwan(lat, lng) -> bool:
    """座標是否為有限數值且落在台灣範圍內"""
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return (TAIWAN_LAT_RANGE[0] < lat < TAIWAN_LAT_RANGE[1]
            and TAIWAN_LNG_RANGE[0] < lng < TAIWAN_LNG_RANGE[1])
