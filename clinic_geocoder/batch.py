#!/usr/bin/env python3
"""
batch.py - 批次解析機構地址座標
================================

讀取爬蟲輸出（JSON 陣列或 {county,total,rows} 包裝），逐筆解析座標，
輸出同樣形狀的 JSON（可選 CSV）。快取每筆即時寫入，中斷後重跑會直接沿用。

用法:
    # 全部解析（需 OPENCAGE_API_KEY）
    clinic-geocoder --in out/taiwan_merged_clean.json --out public/clinics.json

    # 先測試 20 筆，開啟 Nominatim 備援
    clinic-geocoder --limit 20 --nominatim

    # 與昨日結果合併，只查新機構，並輸出需要查詢的清單
    clinic-geocoder --prev public/clinics.json --diff out/new_clinics.json

    # 快取維護
    clinic-geocoder --stats
    clinic-geocoder --import-cache data/geocode-cache.json
    clinic-geocoder --export-cache data/geocode-cache.json
"""

import argparse
import csv
import json
import logging
import os
import sys
import time
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from tabulate import tabulate
from tqdm import tqdm

from clinic_geocoder.cache import CacheWriteError, GeoCache
from clinic_geocoder.config import ConfigError, Settings, load_settings
from clinic_geocoder.geocoder import TaiwanGeocoder
from clinic_geocoder.merge import plan_rows
from clinic_geocoder.models import LOCATION_FIELDS, Record, ResolvedLocation, annotate
from clinic_geocoder.providers import NominatimProvider, OpenCageProvider
from clinic_geocoder.resilience import BackoffPolicy, RateLimiter

logger = logging.getLogger(__name__)


class OutputWriteError(Exception):
    """輸出檔寫入失敗（整個批次中止）"""


# =====================================================================
# 讀寫
# =====================================================================

def load_records(path: str) -> Tuple[List[Dict], Optional[Dict]]:
    """
    讀取輸入檔

    Returns:
        (rows, wrapper) — wrapper 為 {county,total,rows} 形式時的外層（不含 rows），
        純陣列時為 None
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get('rows'), list):
        wrapper = {k: v for k, v in data.items() if k != 'rows'}
        return data['rows'], wrapper
    if isinstance(data, list):
        return data, None
    raise ValueError(f"無法辨識的輸入格式: {path}")


def load_previous(path: str) -> List[Dict]:
    """昨日完整結果；檔案不存在時視為空"""
    if not path or not os.path.exists(path):
        logger.info(f"找不到前次結果 {path}，全部重新查詢")
        return []
    rows, _ = load_records(path)
    return rows


def _atomic_write(path: str, write):
    """先寫暫存檔再 rename，中斷時不會留下半個檔案"""
    target = Path(path)
    tmp = target.with_name(target.name + '.tmp')
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        write(tmp)
        os.replace(tmp, target)
    except OSError as e:
        raise OutputWriteError(f"寫入失敗 {path}: {e}") from e


def write_output(path: str, rows: List[Dict], wrapper: Optional[Dict] = None):
    """輸出 JSON（維持輸入的外層形狀，total 重新計算）"""
    if wrapper is not None:
        payload = dict(wrapper)
        payload['total'] = len(rows)
        payload['rows'] = rows
    else:
        payload = rows

    def write(tmp):
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)

    _atomic_write(path, write)


def _csv_cell(value):
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def write_csv(path: str, rows: List[Dict]):
    """匯出 CSV（utf-8-sig，Excel 可直接開啟）；原始欄位在前、座標欄位在後"""
    columns = []
    for row in rows:
        for key in row:
            if key not in LOCATION_FIELDS and key not in columns:
                columns.append(key)
    columns.extend(LOCATION_FIELDS)

    def write(tmp):
        with open(tmp, 'w', newline='', encoding='utf-8-sig') as f:
            writer = csv.DictWriter(f, fieldnames=columns, extrasaction='ignore')
            writer.writeheader()
            for row in rows:
                writer.writerow({k: _csv_cell(row.get(k)) for k in columns})

    _atomic_write(path, write)


# =====================================================================
# 解析
# =====================================================================

def build_geocoder(settings: Settings, cache: GeoCache) -> TaiwanGeocoder:
    """依設定建立解析器（主要 OpenCage，選用 Nominatim 備援）"""
    settings.require_api_key()
    secondary = NominatimProvider(user_agent=settings.nominatim_user_agent) if settings.use_nominatim else None
    return TaiwanGeocoder(
        primary=OpenCageProvider(settings.opencage_api_key),
        cache=cache,
        secondary=secondary,
        limiter=RateLimiter(settings.min_interval),
        policy=BackoffPolicy(settings.retries, settings.backoff),
        retry_approximate=settings.retry_approximate,
    )


def _error_row(row, error: Exception) -> Dict:
    """處理失敗的列：保留原始欄位（若為物件），座標欄位明確為 None"""
    out = dict(row) if isinstance(row, dict) else {}
    out.update(ResolvedLocation.miss(f"error: {error}").to_dict())
    return out


def resolve_rows(geocoder: TaiwanGeocoder, rows: List[Dict],
                 indexes: Optional[Iterable[int]] = None,
                 progress: bool = True) -> List[Dict]:
    """
    逐筆解析（單一 worker，一次一筆）

    indexes 指定只解析哪些列，其餘列原樣保留。
    單筆發生非預期錯誤（含非物件的列）時標記為 miss 並繼續；快取寫入失敗則整批中止。
    """
    out = [dict(r) if isinstance(r, dict) else r for r in rows]
    todo = list(range(len(rows))) if indexes is None else list(indexes)
    total = len(todo)

    pbar = tqdm(total=total, desc="🌐 地址查詢", unit="row", disable=not progress)
    try:
        for n, i in enumerate(todo, 1):
            try:
                record = Record.from_row(rows[i])
                loc = geocoder.resolve(record)
                out[i] = annotate(record, loc)
            except CacheWriteError:
                raise
            except Exception as e:
                logger.error(f"[ERROR {n}/{total}] 第 {i + 1} 列 {rows[i]!r}: {e}")
                out[i] = _error_row(rows[i], e)
                pbar.update(1)
                continue

            if loc.resolved:
                logger.info(f"[OK {n}/{total}] {record.organization_name} → "
                            f"{loc.latitude},{loc.longitude} ({loc.source}) q={loc.query_used}")
            else:
                logger.info(f"[MISS {n}/{total}] {record.organization_name} | {record.raw_address} "
                            f"({loc.miss_reason})")
            pbar.update(1)
    finally:
        pbar.close()
    return out


def summarize(rows: List[Dict]) -> Dict:
    """結果統計：依來源、近似等級、查無數"""
    by_source = Counter(r.get('source') for r in rows if r.get('source'))
    by_level = Counter(r.get('approximation_level') or 'exact' for r in rows if r.get('source'))
    misses = sum(1 for r in rows if not r.get('source') and r.get('latitude') is None)
    return {
        'total': len(rows),
        'resolved': len(rows) - misses,
        'misses': misses,
        'by_source': dict(by_source),
        'by_level': dict(by_level),
    }


def _count_table(title: str, counts: Dict) -> str:
    rows = [[str(k), f"{v:,}"] for k, v in sorted(counts.items(), key=lambda kv: -kv[1])]
    return tabulate(rows, headers=[title, '筆數'], tablefmt='simple', colalign=('left', 'right'))


def print_summary(summary: Dict, elapsed: float, provider_calls: int):
    print("=" * 60)
    print(f"✅ 完成 {summary['total']:,} 筆（{elapsed:.1f}s，API 呼叫 {provider_calls:,} 次）")
    print(f"   有座標:  {summary['resolved']:>8,}")
    print(f"   查無:    {summary['misses']:>8,}")
    if summary['by_source']:
        print()
        print(_count_table('來源', summary['by_source']))
    if summary['by_level']:
        print()
        print(_count_table('精度', summary['by_level']))
    print("=" * 60)


def print_cache_stats(cache: GeoCache):
    stats = cache.stats()
    print("=" * 60)
    print(f"💾 快取: {cache.db_path}")
    print("=" * 60)
    print(f"   快取總數:  {stats['total']:>10,}")
    if stats['by_level']:
        print()
        print(_count_table('精度', stats['by_level']))
    if stats['by_source']:
        print()
        print(_count_table('來源', stats['by_source']))
    print("=" * 60)


# =====================================================================
# CLI
# =====================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='clinic-geocoder',
        description='批次解析機構地址座標',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
範例:
  %(prog)s                                          # 使用 .env / 預設路徑
  %(prog)s --limit 20 --debug                       # 先測試 20 筆
  %(prog)s --nominatim                              # 啟用 Nominatim 備援
  %(prog)s --prev public/clinics.json --diff out/new_clinics.json  # 每日差異合併
  %(prog)s --retry-approximate                      # 近似結果重新查詢
  %(prog)s --csv public/clinics.csv                 # 另存 CSV
  %(prog)s --stats                                  # 快取統計
  %(prog)s --import-cache data/geocode-cache.json   # 匯入舊 JSON 快取
        """
    )
    parser.add_argument('--in', dest='input_path', metavar='JSON', help='輸入檔（GEOCODE_IN）')
    parser.add_argument('--out', dest='output_path', metavar='JSON', help='輸出檔（GEOCODE_OUT）')
    parser.add_argument('--cache', dest='cache_path', metavar='DB', help='SQLite 快取（GEOCODE_CACHE）')
    parser.add_argument('--csv', metavar='CSV', help='另外輸出 CSV')
    parser.add_argument('--nominatim', dest='use_nominatim', action='store_true', default=None,
                        help='啟用 Nominatim 備援（GEOCODE_NOMINATIM）')
    parser.add_argument('--min-interval', type=float, help='請求最小間隔秒數（預設 1.2）')
    parser.add_argument('--retries', type=int, help='暫時性錯誤重試次數（預設 3）')
    parser.add_argument('--backoff', type=float, help='退避基準秒數（預設 1.5）')
    parser.add_argument('--limit', '-n', type=int, help='只處理前 N 筆')
    parser.add_argument('--prev', metavar='JSON', help='前次完整結果，有座標者直接沿用')
    parser.add_argument('--diff', metavar='JSON', help='[--prev 配合] 輸出需要查詢的列')
    parser.add_argument('--retry-approximate', action='store_true', default=None,
                        help='快取中的近似結果不採用，重新查詢')
    parser.add_argument('--import-cache', metavar='JSON', help='匯入 JSON 快取後結束')
    parser.add_argument('--export-cache', metavar='JSON', help='匯出 JSON 快取後結束')
    parser.add_argument('--stats', action='store_true', help='顯示快取統計後結束')
    parser.add_argument('--debug', '-v', action='store_true', default=None, help='顯示候選清單等除錯訊息')
    return parser


def run(settings: Settings, args: argparse.Namespace) -> int:
    cache = GeoCache(settings.cache_path)

    # ── 快取維護 ──
    if args.import_cache:
        count = cache.import_json_cache(args.import_cache)
        print(f"✅ 匯入 {count:,} 筆快取")
        return 0
    if args.export_cache:
        count = cache.export_json(args.export_cache)
        print(f"✅ 匯出 {count:,} 筆快取到 {args.export_cache}")
        return 0
    if args.stats:
        print_cache_stats(cache)
        return 0

    geocoder = build_geocoder(settings, cache)

    if not os.path.exists(settings.input_path):
        print(f"❌ 找不到輸入檔: {settings.input_path}", file=sys.stderr)
        return 1
    rows, wrapper = load_records(settings.input_path)
    if args.limit:
        rows = rows[:args.limit]

    print("=" * 60)
    print("🌐 批次地址解析")
    print("=" * 60)
    print(f"   輸入: {settings.input_path} ({len(rows):,} 筆)")
    print(f"   快取: {settings.cache_path} ({cache.size:,} 筆)")
    start_time = time.time()

    if args.prev:
        plan = plan_rows(rows, load_previous(args.prev))
        print(f"   沿用舊座標: {len(rows) - len(plan.pending):,} | 需要查詢: {len(plan.pending):,}")
        if args.diff:
            write_output(args.diff, [rows[i] for i in plan.pending])
            print(f"🆕 需要查詢清單: {args.diff}")
        result = resolve_rows(geocoder, plan.rows, plan.pending)
    else:
        result = resolve_rows(geocoder, rows)

    write_output(settings.output_path, result, wrapper)
    print(f"💾 輸出: {settings.output_path}")
    if args.csv:
        write_csv(args.csv, result)
        print(f"💾 CSV: {args.csv}")

    print_summary(summarize(result), time.time() - start_time, geocoder.provider_calls)
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(
            input_path=args.input_path,
            output_path=args.output_path,
            cache_path=args.cache_path,
            use_nominatim=args.use_nominatim,
            min_interval=args.min_interval,
            retries=args.retries,
            backoff=args.backoff,
            debug=args.debug,
            retry_approximate=args.retry_approximate,
        )
    except ConfigError as e:
        print(f"❌ 設定錯誤: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        return run(settings, args)
    except ConfigError as e:
        print(f"❌ 設定錯誤: {e}", file=sys.stderr)
        return 2
    except (CacheWriteError, OutputWriteError) as e:
        print(f"❌ 寫入失敗，批次中止（已完成的結果保留在快取，可直接重跑）: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
