"""
Sales Raster Aggregation
Bins sale points onto a regular grid and reduces each cell
(count, mean price, max price, ...).
"""

import math
from pathlib import Path

import numpy as np
import pandas as pd
import geopandas as gpd
import rasterio
from rasterio.crs import CRS
from rasterio.features import geometry_mask
from rasterio.transform import from_origin, rowcol
from shapely.geometry import box

AGGREGATIONS = ('count', 'sum', 'mean', 'median', 'min', 'max')


# ============================================================================
# 1. GRID DEFINITION
# ============================================================================

def make_grid(bounds, cell_size, crs=None):
    """
    Regular grid anchored at the north-west corner of bounds.
    The east and south edges are rounded outward to whole cells.
    """
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")

    west, south, east, north = bounds
    if not (east > west and north > south):
        raise ValueError(f"Empty grid bounds: {bounds}")

    width = max(1, math.ceil((east - west) / cell_size))
    height = max(1, math.ceil((north - south) / cell_size))

    return {
        'transform': from_origin(west, north, cell_size, cell_size),
        'width': width,
        'height': height,
        'bounds': (west, north - height * cell_size, west + width * cell_size, north),
        'cell_size': cell_size,
        'crs': crs
    }


def grid_for_region(region_gdf, cell_size):
    """Grid covering the region's bounding box, in the region's CRS."""
    return make_grid(tuple(region_gdf.total_bounds), cell_size, crs=region_gdf.crs)


# ============================================================================
# 2. POINT -> CELL
# ============================================================================

def point_cells(points_gdf, grid):
    """
    Row/column of the cell holding each point.
    Points outside the grid get -1 for both.
    """
    xs = points_gdf.geometry.x.to_numpy(dtype=float)
    ys = points_gdf.geometry.y.to_numpy(dtype=float)

    rows = np.full(len(xs), -1, dtype=np.int64)
    cols = np.full(len(xs), -1, dtype=np.int64)

    west, south, east, north = grid['bounds']
    inside = (xs >= west) & (xs <= east) & (ys >= south) & (ys <= north)
    if not inside.any():
        return rows, cols

    r, c = rowcol(grid['transform'], xs[inside], ys[inside])
    # Points on the east/south edge land one past the last cell
    rows[inside] = np.clip(np.asarray(r, dtype=np.int64), 0, grid['height'] - 1)
    cols[inside] = np.clip(np.asarray(c, dtype=np.int64), 0, grid['width'] - 1)
    return rows, cols


# ============================================================================
# 3. RASTERIZATION
# ============================================================================

def rasterize_points(points_gdf, grid, field=None, agg='count'):
    """
    Aggregate points into grid cells.

    Cells that receive no point are NaN for every aggregation, so an empty
    cell can be told apart from a cell whose count or sum is zero.
    """
    if agg not in AGGREGATIONS:
        raise ValueError(f"Unknown aggregation {agg!r}, expected one of {AGGREGATIONS}")
    if agg != 'count' and field is None:
        raise ValueError(f"Aggregation {agg!r} needs a field")
    if field is not None and field not in points_gdf.columns:
        raise ValueError(f"Field {field!r} not found in points")

    if grid['crs'] is not None and points_gdf.crs is not None and points_gdf.crs != grid['crs']:
        points_gdf = points_gdf.to_crs(grid['crs'])

    values = np.full((grid['height'], grid['width']), np.nan, dtype=np.float64)

    rows, cols = point_cells(points_gdf, grid)
    cells = pd.DataFrame({'row': rows, 'col': cols})
    if field is not None:
        cells['value'] = pd.to_numeric(points_gdf[field], errors='coerce').to_numpy()
    cells = cells[cells['row'] >= 0]

    if agg == 'count':
        reduced = cells.groupby(['row', 'col']).size()
    else:
        cells = cells.dropna(subset=['value'])
        reduced = cells.groupby(['row', 'col'])['value'].agg(agg)

    if len(reduced) == 0:
        return values

    values[reduced.index.get_level_values('row'),
           reduced.index.get_level_values('col')] = reduced.to_numpy(dtype=np.float64)
    return values


def mask_to_region(values, grid, region_gdf, all_touched=False):
    """Blank out cells whose centre lies outside the region."""
    if grid['crs'] is not None and region_gdf.crs is not None and region_gdf.crs != grid['crs']:
        region_gdf = region_gdf.to_crs(grid['crs'])

    outside = geometry_mask(
        region_gdf.geometry,
        out_shape=(grid['height'], grid['width']),
        transform=grid['transform'],
        all_touched=all_touched
    )
    masked = values.astype(np.float64, copy=True)
    masked[outside] = np.nan
    return masked


# ============================================================================
# 4. OUTPUTS
# ============================================================================

def raster_to_cells(values, grid, name='value'):
    """Polygon per populated cell, for choropleth maps and tables."""
    west, _, _, north = grid['bounds']
    size = grid['cell_size']

    rows, cols = np.nonzero(~np.isnan(values))
    geometries = [
        box(west + c * size, north - (r + 1) * size, west + (c + 1) * size, north - r * size)
        for r, c in zip(rows, cols)
    ]
    return gpd.GeoDataFrame(
        {'row': rows, 'col': cols, name: values[rows, cols]},
        geometry=geometries,
        crs=grid['crs']
    )


def write_geotiff(values, grid, path):
    """Single-band float32 GeoTIFF, NaN as nodata."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    crs = CRS.from_user_input(grid['crs']) if grid['crs'] is not None else None
    with rasterio.open(
        path, 'w',
        driver='GTiff',
        height=grid['height'],
        width=grid['width'],
        count=1,
        dtype='float32',
        crs=crs,
        transform=grid['transform'],
        nodata=np.nan
    ) as dst:
        dst.write(values.astype('float32'), 1)


def raster_summary(values):
    populated = values[~np.isnan(values)]
    summary = {
        'cells_total': int(values.size),
        'cells_populated': int(populated.size),
        'min': np.nan,
        'mean': np.nan,
        'max': np.nan
    }
    if populated.size > 0:
        summary['min'] = float(populated.min())
        summary['mean'] = float(populated.mean())
        summary['max'] = float(populated.max())
    return summary
