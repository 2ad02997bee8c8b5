#!/usr/bin/env python3
"""
Terrain Grid Map Generator - Web Server

A small Flask JSON API that:
1. Lists grid presets, contour intervals and paper sizes
2. Fetches elevation for a selected area and reports a summary
3. Previews the gaming grid for an area
4. Renders and returns PNG/SVG/PDF map downloads

Usage:
    python map_server.py [--port 8080] [--offline]

--offline serves simulated terrain instead of calling elevation services.
"""

import argparse
import io
import logging

from flask import Flask, jsonify, request, send_file

from contours import CONTOUR_INTERVALS, DEFAULT_INTERVAL_M, DEFAULT_MAJOR_EVERY, generate_contours
from fetch_elevation import ElevationFetcher, SimulatedElevationProvider
from game_grid import (
    GAME_SYSTEM_PRESETS, UNIT_TO_METERS, GridConfig, generate_grid_from_config,
    grid_config_for_system,
)
from map_errors import AreaTooLarge, ComputeError, DataUnavailable, ExportError
from map_export import PAPER_SIZES_MM, ExportOptions, Orientation, export_map
from map_utils import Bounds
from terrain_map import RenderOptions

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Cells returned by /api/grid unless the request asks for fewer
DEFAULT_GRID_PREVIEW_CELLS = 100
MAX_GRID_PREVIEW_CELLS = 5000


def get_fetcher() -> ElevationFetcher:
    """Fetcher configured on the app, or a default one with live providers."""
    fetcher = app.config.get("ELEVATION_FETCHER")
    if fetcher is None:
        fetcher = ElevationFetcher()
        app.config["ELEVATION_FETCHER"] = fetcher
    return fetcher


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _bounds_from(data: dict) -> Bounds:
    if "bounds" not in data:
        raise ValueError("Missing 'bounds'")
    return Bounds.from_dict(data["bounds"])


def _grid_config_from(data: dict) -> GridConfig:
    grid = data.get("grid") or {}
    if "system" in grid:
        return grid_config_for_system(
            grid["system"],
            show_labels=bool(grid.get("show_labels", True)),
            label_style=grid.get("label_style", "alphanumeric"),
        )
    return GridConfig.from_dict(grid)


@app.errorhandler(AreaTooLarge)
def handle_area_too_large(e):
    return jsonify({
        'error': e.user_message,
        'limit': e.limit,
        'requested': e.requested,
        'unit': e.unit,
    }), 413


@app.errorhandler(DataUnavailable)
def handle_data_unavailable(e):
    return jsonify({'error': e.user_message, 'failures': e.failures}), 502


@app.errorhandler(ComputeError)
def handle_compute_error(e):
    return jsonify({'error': e.user_message, 'detail': str(e)}), 400


@app.errorhandler(ValueError)
def handle_value_error(e):
    return jsonify({'error': str(e)}), 400


@app.errorhandler(ExportError)
def handle_export_error(e):
    logger.error("Export failed: %s", e)
    return jsonify({'error': e.user_message, 'detail': str(e)}), 500


@app.route('/api/presets', methods=['GET'])
def get_presets():
    """Grid presets, contour intervals and paper sizes for the UI."""
    return jsonify({
        'game_systems': {
            key: {**preset, 'grid_type': preset['grid_type'].value}
            for key, preset in GAME_SYSTEM_PRESETS.items()
        },
        'units': list(UNIT_TO_METERS),
        'contour_intervals': CONTOUR_INTERVALS,
        'paper_sizes': {size.value: list(mm) for size, mm in PAPER_SIZES_MM.items()},
        'orientations': [o.value for o in Orientation],
        'formats': ['png', 'svg', 'pdf'],
    })


@app.route('/api/elevation', methods=['POST'])
def get_elevation():
    """Fetch elevation for {bounds, source?} and return its summary."""
    data = _json_body()
    bounds = _bounds_from(data)
    raster = get_fetcher().fetch(bounds, source_hint=data.get('source'))
    return jsonify(raster.summary())


@app.route('/api/grid', methods=['POST'])
def get_grid():
    """Grid dimensions for {bounds, grid} plus the first `limit` cells."""
    data = _json_body()
    bounds = _bounds_from(data)
    grid = generate_grid_from_config(bounds, _grid_config_from(data))

    limit = int(data.get('limit', DEFAULT_GRID_PREVIEW_CELLS))
    limit = max(0, min(limit, MAX_GRID_PREVIEW_CELLS))
    return jsonify({
        'grid_type': grid.grid_type.value,
        'columns': grid.columns,
        'rows': grid.rows,
        'count': len(grid),
        'cell_size_meters': grid.cell_size_meters,
        'cells': [cell.as_dict() for cell in grid[:limit]],
    })


@app.route('/api/export', methods=['POST'])
def export():
    """
    Run the full pipeline and return the map file.

    Body: {bounds, interval?, major_every?, source?, grid?, render?, export?}
    """
    data = _json_body()
    bounds = _bounds_from(data)
    grid_config = _grid_config_from(data)
    render_options = RenderOptions.from_dict(data.get('render') or {})
    export_options = ExportOptions.from_dict(data.get('export') or {})
    interval = float(data.get('interval', DEFAULT_INTERVAL_M))
    major_every = int(data.get('major_every', DEFAULT_MAJOR_EVERY))

    raster = get_fetcher().fetch(bounds, source_hint=data.get('source'))
    contours = generate_contours(raster, interval, major_every)
    grid = generate_grid_from_config(bounds, grid_config)
    result = export_map(bounds, contours, grid, render_options, export_options)

    return send_file(
        io.BytesIO(result.data),
        mimetype=result.mime_type,
        as_attachment=True,
        download_name=result.filename,
    )


def main():
    parser = argparse.ArgumentParser(description="Terrain grid map generator web server")
    parser.add_argument("--port", type=int, default=8080,
                        help="Port to listen on (default: 8080)")
    parser.add_argument("--offline", action="store_true",
                        help="Use simulated terrain instead of elevation services")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if args.offline:
        app.config["ELEVATION_FETCHER"] = ElevationFetcher(
            providers={SimulatedElevationProvider.name: SimulatedElevationProvider()}
        )

    logger.info("Terrain Grid Map Generator listening on http://localhost:%d", args.port)
    app.run(debug=False, port=args.port, threaded=True)


if __name__ == '__main__':
    main()
