"""
Housing Sales Data Loading
Loads the sales CSV and the city boundary, and keeps the sales inside the city.
"""

import pandas as pd
import geopandas as gpd
from pathlib import Path

# Project paths
script_dir = Path(__file__).parent
project_root = script_dir.parent
data_dir = project_root / "data"

DEFAULT_SALES_PATH = data_dir / "kc_house_data.csv"
DEFAULT_BOUNDARY_PATH = data_dir / "city_boundary" / "city_boundary.shp"

REQUIRED_COLUMNS = ['price', 'lat', 'long']
SALES_COLUMNS = [
    'id', 'date', 'price', 'bedrooms', 'bathrooms', 'sqft_living',
    'sqft_lot', 'floors', 'yr_built', 'zipcode', 'lat', 'long'
]


# ============================================================================
# 1. SALES CSV
# ============================================================================

def load_sales(csv_path, columns=None):
    """
    Load housing sales and keep the columns used by the report.
    Rows without a location or a price are dropped.
    """
    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Sales CSV not found: {csv_path}")

    sales = pd.read_csv(csv_path, low_memory=False)

    missing = [col for col in REQUIRED_COLUMNS if col not in sales.columns]
    if missing:
        raise ValueError(f"Sales CSV is missing required columns: {missing}")

    wanted = columns or SALES_COLUMNS
    keep = [col for col in wanted if col in sales.columns]
    for col in REQUIRED_COLUMNS:
        if col not in keep:
            keep.append(col)
    sales = sales[keep].copy()

    for col in REQUIRED_COLUMNS:
        sales[col] = pd.to_numeric(sales[col], errors='coerce')
    if 'date' in sales.columns:
        sales['date'] = pd.to_datetime(sales['date'], errors='coerce')

    n_raw = len(sales)
    sales = sales.dropna(subset=REQUIRED_COLUMNS)
    dropped = n_raw - len(sales)

    print(f"Loaded {len(sales)} sales from {csv_path.name}")
    if dropped:
        print(f"  Dropped {dropped} rows without price or location")

    return sales


def sales_to_geodataframe(sales, crs="EPSG:4326"):
    """Turn the long/lat columns into point geometry."""
    return gpd.GeoDataFrame(
        sales,
        geometry=gpd.points_from_xy(sales['long'], sales['lat']),
        crs=crs
    )


# ============================================================================
# 2. CITY BOUNDARY
# ============================================================================

def load_city_boundary(boundary_path, name_column=None, region_name=None):
    """
    Load the city boundary and dissolve it into a single region polygon.
    With name_column/region_name, only the matching features are used.
    """
    boundary_path = Path(boundary_path)
    if not boundary_path.exists():
        raise FileNotFoundError(f"Boundary file not found: {boundary_path}")

    boundary = gpd.read_file(boundary_path)
    if boundary.crs is None:
        print("  Warning: boundary has no CRS, assuming EPSG:4326")
        boundary = boundary.set_crs("EPSG:4326")

    if name_column is not None or region_name is not None:
        if name_column is None or region_name is None:
            raise ValueError("name_column and region_name must be given together")
        if name_column not in boundary.columns:
            raise ValueError(f"Boundary has no column {name_column!r}")
        boundary = boundary[boundary[name_column].astype(str) == str(region_name)]
        if len(boundary) == 0:
            raise ValueError(f"No boundary feature with {name_column} == {region_name!r}")

    if len(boundary) == 0:
        raise ValueError(f"Boundary file has no features: {boundary_path}")

    region = gpd.GeoDataFrame(
        {'name': [region_name or boundary_path.stem]},
        geometry=[boundary.geometry.union_all()],
        crs=boundary.crs
    )

    print(f"Loaded boundary from {boundary_path.name} ({len(boundary)} features)")
    return region


# ============================================================================
# 3. REGION FILTER
# ============================================================================

def filter_to_region(sales_gdf, region_gdf):
    """Keep the sales that fall within the region polygon."""
    if region_gdf.crs != sales_gdf.crs:
        region_gdf = region_gdf.to_crs(sales_gdf.crs)

    # Join on positions so sales sharing an index label stay distinct
    joined = gpd.sjoin(
        sales_gdf.reset_index(drop=True),
        region_gdf[['geometry']],
        how='inner',
        predicate='within'
    )
    # A sale inside overlapping features shows up once per feature
    positions = sorted(set(joined.index))
    inside = sales_gdf.iloc[positions]

    pct = (len(inside) / len(sales_gdf) * 100) if len(sales_gdf) > 0 else 0
    print(f"  {len(inside)} of {len(sales_gdf)} sales inside region ({pct:.1f}%)")
    return inside


# ============================================================================
# 4. SUMMARY
# ============================================================================

def summarize_sales(sales_gdf):
    """Descriptive statistics for the sale prices."""
    prices = sales_gdf['price']
    rows = [
        ('Sales', len(sales_gdf)),
        ('Mean price', prices.mean()),
        ('Median price', prices.median()),
        ('Min price', prices.min()),
        ('Max price', prices.max()),
    ]
    if 'date' in sales_gdf.columns and sales_gdf['date'].notna().any():
        rows.append(('First sale', sales_gdf['date'].min().date().isoformat()))
        rows.append(('Last sale', sales_gdf['date'].max().date().isoformat()))

    return pd.DataFrame(rows, columns=['Statistic', 'Value'])
