#!/usr/bin/env python3
"""
機構地圖資料服務器
使用 Flask 提供批次解析結果的唯讀查詢 API（不做即時地址解析）
"""

import argparse
import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS

from clinic_geocoder.batch import load_records, summarize
from clinic_geocoder.cache import GeoCache
from clinic_geocoder.region import canonical_region

DEFAULT_DATA = 'public/clinics.json'


def create_app(data_path: str = None, cache_path: str = None) -> Flask:
    """建立 Flask app；data_path 為 batch 輸出的 JSON"""
    app = Flask(__name__)
    CORS(app)
    app.config['DATA_PATH'] = data_path or os.getenv('GEOCODE_SERVER_DATA') or DEFAULT_DATA
    app.config['CACHE_PATH'] = cache_path

    def read_rows():
        rows, _ = load_records(app.config['DATA_PATH'])
        return rows

    @app.route('/api/config', methods=['GET'])
    def get_config():
        """獲取前端配置（包括 API Key）"""
        return jsonify({
            'google_maps_api_key': os.getenv('GOOGLE_MAPS_API_KEY', '')
        })

    @app.route('/api/clinics', methods=['GET'])
    def list_clinics():
        """
        機構列表

        參數:
            county   只列出該縣市（臺/台 視為相同）
            resolved 1 = 只列出有座標的
        """
        county = request.args.get('county', '').strip()
        resolved_only = request.args.get('resolved', '') in ('1', 'true')

        try:
            rows = read_rows()
        except FileNotFoundError:
            return jsonify({'success': False, 'error': '尚無資料，請先執行批次解析'}), 404
        except (OSError, ValueError) as e:
            return jsonify({'success': False, 'error': str(e)}), 500

        if county:
            target = canonical_region(county)
            rows = [r for r in rows
                    if target in canonical_region(str(r.get('county') or r.get('expected_region') or ''))
                    or target in canonical_region(str(r.get('address') or r.get('raw_address') or ''))]
        if resolved_only:
            rows = [r for r in rows if r.get('latitude') is not None and r.get('longitude') is not None]

        return jsonify({
            'success': True,
            'count': len(rows),
            'data': rows,
        })

    @app.route('/api/stats', methods=['GET'])
    def get_stats():
        """解析結果統計"""
        try:
            stats = summarize(read_rows())
        except FileNotFoundError:
            return jsonify({'success': False, 'error': '尚無資料，請先執行批次解析'}), 404
        except (OSError, ValueError) as e:
            return jsonify({'success': False, 'error': str(e)}), 500

        if app.config['CACHE_PATH'] and os.path.exists(app.config['CACHE_PATH']):
            stats['cache'] = GeoCache(app.config['CACHE_PATH']).stats()

        return jsonify({
            'success': True,
            'stats': stats,
        })

    return app


def main(argv=None):
    load_dotenv()
    parser = argparse.ArgumentParser(description='機構地圖資料服務器')
    parser.add_argument('--data', help=f'batch 輸出 JSON（預設 GEOCODE_SERVER_DATA 或 {DEFAULT_DATA}）')
    parser.add_argument('--cache', help='SQLite 快取（顯示快取統計用）', default=os.getenv('GEOCODE_CACHE'))
    parser.add_argument('--port', type=int, default=5000)
    parser.add_argument('--debug', action='store_true')
    args = parser.parse_args(argv)

    app = create_app(args.data, args.cache)

    print("=" * 60)
    print("🗺️  機構地圖資料服務器")
    print("=" * 60)
    print(f"資料檔: {app.config['DATA_PATH']}")
    print(f"服務器啟動於: http://localhost:{args.port}")
    print("按 Ctrl+C 停止服務器")
    print("=" * 60)

    app.run(debug=args.debug, host='0.0.0.0', port=args.port)


if __name__ == '__main__':
    main()
