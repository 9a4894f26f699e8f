"""
地址正規化單元測試
"""

from clinic_geocoder.address_utils import (
    MAX_QUERY_BYTES,
    clamp_query,
    encoded_length,
    fullwidth_to_halfwidth,
    normalize,
    parse_zh_1_to_99,
    tai_variants,
    truncate_at_house_number,
)


def test_parse_zh_1_to_99():
    """測試中文數字 1～99"""
    cases = [
        ('一', 1), ('兩', 2), ('九', 9), ('十', 10),
        ('十一', 11), ('二十', 20), ('二十三', 23), ('九十九', 99),
    ]
    for text, expected in cases:
        result = parse_zh_1_to_99(text)
        assert result == expected, f'parse_zh_1_to_99("{text}") = {result}, expected {expected}'
    print('✅ 中文數字轉換 OK')


def test_parse_zh_rejects_out_of_grammar():
    for text in ('', '零', '一百', '二二八', '十十', '中'):
        assert parse_zh_1_to_99(text) is None, text


def test_normalize():
    """測試地址正規化"""
    cases = [
        ('330桃園市桃園區中正路100號5樓（近火車站）;地下1樓', '桃園市桃園區中正路100號'),
        ('臺北市大安區信義路三段50號B1', '臺北市大安區信義路三段50號'),
        ('台灣台中市西屯區臺灣大道三段99號', '台中市西屯區臺灣大道三段99號'),
        ('新北市板橋區文化路一段100號之3室', '新北市板橋區文化路一段100號'),
        ('高雄市 苓雅區 四維三路 2 號', '高雄市苓雅區四維三路2號'),
        ('中華民國桃園市中壢區中山路100號', '桃園市中壢區中山路100號'),
        ('桃園市中壢區中山路１００號', '桃園市中壢區中山路100號'),
        ('臺南市東區大學路1號(成大醫院)', '臺南市東區大學路1號'),
    ]
    for text, expected in cases:
        result = normalize(text)
        assert result == expected, f'normalize("{text}") = "{result}", expected "{expected}"'
    print('✅ 正規化 OK')


def test_normalize_without_house_number_keeps_road():
    assert normalize('桃園市中壢區中山路') == '桃園市中壢區中山路'


def test_normalize_is_total():
    for text in (None, '', '   ', ';', '（）', 12345):
        assert isinstance(normalize(text), str)


def test_normalize_keeps_leading_house_number():
    # 三位數後接「號」不是郵遞區號
    assert normalize('100號') == '100號'


def test_truncate_at_house_number():
    assert truncate_at_house_number('中山路100號之3室') == '中山路100號'
    assert truncate_at_house_number('中山路') == '中山路'


def test_fullwidth_to_halfwidth():
    assert fullwidth_to_halfwidth('１２３－４') == '123-4'
    assert fullwidth_to_halfwidth('中山路　１號') == '中山路 1號'


def test_tai_variants():
    assert tai_variants('台南市永康區') == ['台南市永康區', '臺南市永康區']
    assert tai_variants('臺北市') == ['臺北市', '台北市']
    assert tai_variants('桃園市') == ['桃園市']


def test_clamp_query():
    short = '桃園市中壢區中山路100號'
    assert clamp_query(short) == short

    long_query = '路' * 100
    clamped = clamp_query(long_query)
    assert clamped, '超長查詢應截斷而不是丟棄'
    assert encoded_length(clamped) <= MAX_QUERY_BYTES
    assert long_query.startswith(clamped)
