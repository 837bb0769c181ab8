"""
Housing Sales Spatial Report
Sales inside the city boundary, aggregated onto a regular grid:
sales count, mean price and max price per cell.
"""

import argparse
import sys

import pandas as pd
import numpy as np
from pathlib import Path
import matplotlib.pyplot as plt
from pyproj import CRS
from pyproj.exceptions import CRSError
from rasterio.transform import xy
import warnings
warnings.filterwarnings('ignore')

# Set matplotlib backend
import matplotlib
matplotlib.use('Agg')

from housing_data import (
    DEFAULT_BOUNDARY_PATH, DEFAULT_SALES_PATH, filter_to_region, load_city_boundary,
    load_sales, sales_to_geodataframe, summarize_sales
)
from sales_raster import (
    grid_for_region, mask_to_region, raster_summary, raster_to_cells,
    rasterize_points, write_geotiff
)

# Project paths
script_dir = Path(__file__).parent
project_root = script_dir.parent
output_dir = project_root / "outputs"

# UTM zone 10N, metres
PROJECTED_CRS = "EPSG:32610"
DEFAULT_CELL_SIZE = 500
FIGURE_DPI = 300

REPORT_LAYERS = [
    {
        'name': 'sales_count',
        'field': None,
        'agg': 'count',
        'title': 'Number of Sales',
        'label': 'Sales per cell',
        'cmap': 'viridis'
    },
    {
        'name': 'mean_price',
        'field': 'price',
        'agg': 'mean',
        'title': 'Mean Sale Price',
        'label': 'Mean sale price ($)',
        'cmap': 'YlOrRd'
    },
    {
        'name': 'max_price',
        'field': 'price',
        'agg': 'max',
        'title': 'Maximum Sale Price',
        'label': 'Max sale price ($)',
        'cmap': 'magma'
    },
]


# ============================================================================
# 1. RASTER LAYERS
# ============================================================================

def build_raster_layers(sales_gdf, region_gdf, cell_size, crs=PROJECTED_CRS, mask=True):
    """
    Rasterize the sales for every report layer.
    Returns {layer name: (values, grid)}; all layers share one grid.
    """
    sales_proj = sales_gdf.to_crs(crs)
    region_proj = region_gdf.to_crs(crs)
    grid = grid_for_region(region_proj, cell_size)
    print(f"  Grid: {grid['width']} x {grid['height']} cells of {cell_size:,g} m")

    layers = {}
    for layer in REPORT_LAYERS:
        values = rasterize_points(sales_proj, grid, field=layer['field'], agg=layer['agg'])
        if mask:
            values = mask_to_region(values, grid, region_proj)
        layers[layer['name']] = (values, grid)
        populated = int((~np.isnan(values)).sum())
        print(f"  {layer['name']}: {populated} populated cells")

    return layers


def summarize_layers(layers):
    """One row of cell statistics per raster layer."""
    rows = []
    for layer in REPORT_LAYERS:
        if layer['name'] not in layers:
            continue
        values, _ = layers[layer['name']]
        stats = raster_summary(values)
        rows.append({
            'Layer': layer['name'],
            'Aggregation': layer['agg'],
            'Cells': stats['cells_total'],
            'Populated Cells': stats['cells_populated'],
            'Min': stats['min'],
            'Mean': stats['mean'],
            'Max': stats['max']
        })
    return pd.DataFrame(rows)


def build_cell_table(layers):
    """Cell centres and every layer's value, for cells populated in any layer."""
    names = list(layers)
    columns = ['row', 'col', 'x', 'y'] + names
    if not names:
        return pd.DataFrame(columns=columns)

    grid = layers[names[0]][1]
    populated = np.zeros((grid['height'], grid['width']), dtype=bool)
    for values, _ in layers.values():
        populated |= ~np.isnan(values)

    rows, cols = np.nonzero(populated)
    if len(rows) == 0:
        return pd.DataFrame(columns=columns)

    xs, ys = xy(grid['transform'], rows, cols)
    table = pd.DataFrame({
        'row': rows,
        'col': cols,
        'x': np.asarray(xs, dtype=float),
        'y': np.asarray(ys, dtype=float)
    })
    for name, (values, _) in layers.items():
        table[name] = values[rows, cols]
    return table


# ============================================================================
# 2. TABLE VISUALIZATION
# ============================================================================

def format_cell(column, value):
    if isinstance(value, str):
        return value
    if pd.isna(value):
        return ""
    if 'price' in str(column).lower():
        return f"${value:,.0f}"
    if isinstance(value, (float, np.floating)) and not float(value).is_integer():
        return f"{value:,.2f}"
    return f"{value:,.0f}"


def create_summary_table(df, title, output_path):
    """Create a formatted table visualization from a DataFrame."""
    if len(df) == 0:
        return

    fig, ax = plt.subplots(figsize=(10, max(3, len(df) * 0.5)))
    ax.axis('tight')
    ax.axis('off')

    # Statistic/Value tables carry the unit in the row label
    df_display = df.copy()
    if list(df_display.columns) == ['Statistic', 'Value']:
        df_display['Value'] = [
            format_cell(stat, value) for stat, value in zip(df_display['Statistic'], df_display['Value'])
        ]
    else:
        for col in df_display.columns:
            df_display[col] = [format_cell(col, value) for value in df_display[col]]

    table = ax.table(cellText=df_display.values,
                     colLabels=df_display.columns,
                     cellLoc='left',
                     loc='center',
                     bbox=[0, 0, 1, 1])

    table.auto_set_font_size(False)
    table.set_fontsize(10)
    table.scale(1, 2)

    # Header styling
    for i in range(len(df_display.columns)):
        table[(0, i)].set_facecolor('#3498db')
        table[(0, i)].set_text_props(weight='bold', color='white')

    # Row styling (alternating colors)
    for i in range(1, len(df_display) + 1):
        for j in range(len(df_display.columns)):
            table[(i, j)].set_facecolor('#ecf0f1' if i % 2 == 0 else 'white')

    fig.suptitle(title, fontsize=16, fontweight='bold', y=0.98)

    plt.tight_layout()
    plt.savefig(output_path, dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()
    print(f"  Saved: {output_path.name}")


# ============================================================================
# 3. MAPS AND CHARTS
# ============================================================================

def plot_sales_points(sales_gdf, region_gdf, output_path):
    """Map of individual sales over the city outline, coloured by price."""
    sales_vis = sales_gdf.to_crs("EPSG:4326")
    region_vis = region_gdf.to_crs("EPSG:4326")

    fig, ax = plt.subplots(figsize=(14, 12))
    sales_vis.plot(
        ax=ax,
        column='price',
        cmap='YlOrRd',
        markersize=2,
        alpha=0.6,
        legend=True,
        legend_kwds={
            'label': 'Sale price ($)',
            'shrink': 0.8,
            'orientation': 'vertical',
            'pad': 0.02
        }
    )
    region_vis.boundary.plot(ax=ax, color='black', linewidth=0.8)

    ax.set_title("Housing Sales Inside the City Boundary",
                 fontsize=16, fontweight='bold', pad=20)
    ax.set_xlabel("Longitude", fontsize=12)
    ax.set_ylabel("Latitude", fontsize=12)
    ax.text(0.02, 0.02, f'Sales: {len(sales_vis):,}',
            transform=ax.transAxes, fontsize=10,
            bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    plt.tight_layout()
    plt.savefig(output_path, dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()
    print(f"  Saved: {output_path.name}")


def raster_map_note(grid, populated):
    return f"Cell size: {grid['cell_size']:,g} m\nPopulated cells: {populated:,}"


def plot_raster_map(values, grid, region_gdf, title, label, output_path, cmap='viridis'):
    """Choropleth of the populated grid cells over the city outline."""
    cells = raster_to_cells(values, grid, name='value')
    region_proj = region_gdf.to_crs(grid['crs'])

    fig, ax = plt.subplots(figsize=(14, 12))
    if len(cells) > 0:
        cells.plot(
            ax=ax,
            column='value',
            cmap=cmap,
            legend=True,
            legend_kwds={
                'label': label,
                'shrink': 0.8,
                'orientation': 'vertical',
                'pad': 0.02
            },
            edgecolor='none'
        )
    else:
        print(f"  Warning: no populated cells for {output_path.name}")
    region_proj.boundary.plot(ax=ax, color='black', linewidth=0.8)

    ax.set_title(title, fontsize=16, fontweight='bold', pad=20)
    ax.axis('off')
    ax.text(0.02, 0.02, raster_map_note(grid, len(cells)),
            transform=ax.transAxes, fontsize=10,
            bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    plt.tight_layout()
    plt.savefig(output_path, dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()
    print(f"  Saved: {output_path.name}")


def plot_price_distribution(sales_gdf, output_path):
    """Histogram of sale prices with mean and median."""
    prices = sales_gdf['price']

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.hist(prices, bins=50, color='#3498db', alpha=0.7, edgecolor='white')
    ax.axvline(prices.mean(), color='#e74c3c', linestyle='--', linewidth=2,
               label=f'Mean: ${prices.mean():,.0f}')
    ax.axvline(prices.median(), color='#2ecc71', linestyle='-', linewidth=2,
               label=f'Median: ${prices.median():,.0f}')
    ax.set_xlabel('Sale Price ($)', fontsize=12)
    ax.set_ylabel('Number of Sales', fontsize=12)
    ax.set_title('Sale Price Distribution', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3, axis='y')
    ax.legend(loc='upper right')

    plt.tight_layout()
    plt.savefig(output_path, dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()
    print(f"  Saved: {output_path.name}")


# ============================================================================
# 4. REPORT
# ============================================================================

def run_report(sales_path=DEFAULT_SALES_PATH, boundary_path=DEFAULT_BOUNDARY_PATH,
               out_dir=output_dir, cell_size=DEFAULT_CELL_SIZE, crs=PROJECTED_CRS,
               name_column=None, region_name=None, mask=True):
    """Run the whole report and return what it produced."""
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")
    try:
        crs = CRS.from_user_input(crs)
    except CRSError as e:
        raise ValueError(f"Invalid CRS {crs!r}: {e}") from e

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    files = []

    print("=" * 70)
    print("Housing Sales Spatial Report")
    print("=" * 70)

    print("\n1. Loading data...")
    sales = load_sales(sales_path)
    region = load_city_boundary(boundary_path, name_column=name_column, region_name=region_name)

    print("\n2. Filtering sales to the city boundary...")
    sales_gdf = sales_to_geodataframe(sales)
    sales_in = filter_to_region(sales_gdf, region)
    if len(sales_in) == 0:
        raise ValueError("No sales fall inside the city boundary")

    print("\n3. Summarizing sales...")
    sales_summary = summarize_sales(sales_in)
    print(sales_summary.to_string(index=False))
    path = out_dir / "sales_summary.csv"
    sales_summary.to_csv(path, index=False)
    files.append(path)
    print(f"  Saved: {path.name}")
    path = out_dir / "sales_summary_table.png"
    create_summary_table(sales_summary, "Housing Sales Summary", path)
    files.append(path)

    print("\n4. Rasterizing sales...")
    layers = build_raster_layers(sales_in, region, cell_size, crs=crs, mask=mask)
    for name, (values, grid) in layers.items():
        path = out_dir / f"{name}.tif"
        write_geotiff(values, grid, path)
        files.append(path)
        print(f"  Saved: {path.name}")

    layer_summary = summarize_layers(layers)
    path = out_dir / "raster_summary.csv"
    layer_summary.to_csv(path, index=False)
    files.append(path)
    print(f"  Saved: {path.name}")

    cell_table = build_cell_table(layers)
    path = out_dir / "grid_cells.csv"
    cell_table.to_csv(path, index=False)
    files.append(path)
    print(f"  Saved: {path.name}")

    print("\n5. Creating visualizations...")
    path = out_dir / "sales_points.png"
    plot_sales_points(sales_in, region, path)
    files.append(path)

    path = out_dir / "price_distribution.png"
    plot_price_distribution(sales_in, path)
    files.append(path)

    for layer in REPORT_LAYERS:
        values, grid = layers[layer['name']]
        path = out_dir / f"{layer['name']}_map.png"
        plot_raster_map(values, grid, region, layer['title'], layer['label'], path, cmap=layer['cmap'])
        files.append(path)

    print("\n" + "=" * 70)
    print("Report Complete!")
    print("=" * 70)
    print(f"\nSales inside boundary: {len(sales_in):,}")
    print(layer_summary.to_string(index=False))

    return {
        'sales': sales_in,
        'region': region,
        'layers': layers,
        'sales_summary': sales_summary,
        'raster_summary': layer_summary,
        'files': files
    }


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Housing sales spatial report")
    parser.add_argument("--sales", default=str(DEFAULT_SALES_PATH), help="Sales CSV")
    parser.add_argument("--boundary", default=str(DEFAULT_BOUNDARY_PATH),
                        help="City boundary (shapefile, GeoJSON, ...)")
    parser.add_argument("--name-column", default=None,
                        help="Boundary attribute used to pick the city")
    parser.add_argument("--region", default=None, help="Value of --name-column to keep")
    parser.add_argument("--cell-size", type=float, default=DEFAULT_CELL_SIZE,
                        help="Grid cell size in CRS units (default: %(default)s)")
    parser.add_argument("--crs", default=PROJECTED_CRS,
                        help="Projected CRS used for the grid (default: %(default)s)")
    parser.add_argument("--output-dir", default=str(output_dir), help="Output directory")
    parser.add_argument("--no-mask", action="store_true",
                        help="Keep cells whose centre is outside the boundary")
    return parser.parse_args(argv)


def main(argv=None):
    """Main execution function."""
    args = parse_args(argv)
    try:
        run_report(
            sales_path=args.sales,
            boundary_path=args.boundary,
            out_dir=args.output_dir,
            cell_size=args.cell_size,
            crs=args.crs,
            name_column=args.name_column,
            region_name=args.region,
            mask=not args.no_mask
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
