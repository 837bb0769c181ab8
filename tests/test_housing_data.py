"""
Tests for sales loading, boundary loading and the region filter
"""
import unittest
import sys
import os
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import box

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'scripts'))

from housing_data import (
    filter_to_region, load_city_boundary, load_sales, sales_to_geodataframe, summarize_sales
)


REGION_BOX = (-122.40, 47.55, -122.30, 47.65)


def make_sales_frame():
    return pd.DataFrame({
        'id': [1, 2, 3, 4, 5, 6],
        'date': ['2014-10-13', '2014-12-09', '2015-02-25', '2015-01-05', '2014-06-23', '2015-03-12'],
        'price': [221900, 538000, 180000, 604000, np.nan, 510000],
        'bedrooms': [3, 3, 2, 4, 3, 3],
        'view': [0, 0, 0, 0, 0, 0],
        'lat': [47.60, 47.62, 47.57, 47.60, 47.61, 47.60],
        'long': [-122.35, -122.33, -122.38, -122.20, -122.34, -122.40]
    })


class TestLoadSales(unittest.TestCase):
    """Sales CSV loading and column selection."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.csv_path = self.tmp / "sales.csv"
        make_sales_frame().to_csv(self.csv_path, index=False)

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_selects_known_columns(self):
        """Unused columns are dropped, known ones kept."""
        sales = load_sales(self.csv_path)
        self.assertNotIn('view', sales.columns)
        for col in ['id', 'date', 'price', 'bedrooms', 'lat', 'long']:
            self.assertIn(col, sales.columns)

    def test_drops_rows_without_price(self):
        """The row with a missing price is removed."""
        sales = load_sales(self.csv_path)
        self.assertEqual(len(sales), 5)
        self.assertFalse(sales['price'].isna().any())

    def test_parses_dates(self):
        """Sale dates come back as datetimes."""
        sales = load_sales(self.csv_path)
        self.assertTrue(pd.api.types.is_datetime64_any_dtype(sales['date']))

    def test_explicit_columns(self):
        """Required columns are always kept, even if not requested."""
        sales = load_sales(self.csv_path, columns=['id'])
        self.assertEqual(list(sales.columns), ['id', 'price', 'lat', 'long'])

    def test_missing_file(self):
        """A missing CSV raises FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            load_sales(self.tmp / "nope.csv")

    def test_missing_required_column(self):
        """A CSV without coordinates is rejected."""
        make_sales_frame().drop(columns=['lat']).to_csv(self.csv_path, index=False)
        with self.assertRaises(ValueError) as ctx:
            load_sales(self.csv_path)
        self.assertIn('lat', str(ctx.exception))

    def test_king_county_dates(self):
        """The compact 20141013T000000 format parses directly."""
        frame = make_sales_frame()
        frame['date'] = ['20141013T000000', '20141209T000000', '20150225T000000',
                         '20150105T000000', '20140623T000000', '20150312T000000']
        frame.to_csv(self.csv_path, index=False)
        sales = load_sales(self.csv_path)
        self.assertEqual(sales['date'].iloc[0], pd.Timestamp('2014-10-13'))
        self.assertEqual(sales['date'].iloc[1], pd.Timestamp('2014-12-09'))
        self.assertFalse(sales['date'].isna().any())

    def test_geodataframe(self):
        """Points are built from long/lat in EPSG:4326."""
        gdf = sales_to_geodataframe(load_sales(self.csv_path))
        self.assertEqual(gdf.crs.to_epsg(), 4326)
        self.assertAlmostEqual(gdf.geometry.iloc[0].x, -122.35)
        self.assertAlmostEqual(gdf.geometry.iloc[0].y, 47.60)


class TestCityBoundary(unittest.TestCase):
    """Boundary loading and feature selection."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.path = self.tmp / "cities.geojson"
        cities = gpd.GeoDataFrame(
            {'CITY': ['Seattle', 'Bellevue']},
            geometry=[box(*REGION_BOX), box(-122.20, 47.55, -122.10, 47.65)],
            crs="EPSG:4326"
        )
        cities.to_file(self.path, driver='GeoJSON')

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_missing_crs_assumed_wgs84(self):
        """A shapefile without a .prj is read as EPSG:4326."""
        path = self.tmp / "no_crs.shp"
        gpd.GeoDataFrame({'CITY': ['Seattle']}, geometry=[box(*REGION_BOX)]).to_file(path)
        self.assertFalse((self.tmp / "no_crs.prj").exists())
        region = load_city_boundary(path)
        self.assertEqual(region.crs.to_epsg(), 4326)

    def test_selects_named_city(self):
        """Only the requested feature is used."""
        region = load_city_boundary(self.path, name_column='CITY', region_name='Seattle')
        self.assertEqual(len(region), 1)
        np.testing.assert_allclose(region.total_bounds, REGION_BOX)

    def test_dissolves_all_features(self):
        """Without a name filter every feature becomes one region."""
        region = load_city_boundary(self.path)
        self.assertEqual(len(region), 1)
        self.assertAlmostEqual(region.total_bounds[2], -122.10)

    def test_unknown_city(self):
        """No matching feature is an error."""
        with self.assertRaises(ValueError):
            load_city_boundary(self.path, name_column='CITY', region_name='Tacoma')

    def test_unknown_column(self):
        """A name column that does not exist is an error."""
        with self.assertRaises(ValueError):
            load_city_boundary(self.path, name_column='NAME', region_name='Seattle')

    def test_missing_file(self):
        """A missing boundary file raises FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            load_city_boundary(self.tmp / "missing.shp")


class TestRegionFilter(unittest.TestCase):
    """Point-in-polygon filtering."""

    def setUp(self):
        self.sales = sales_to_geodataframe(make_sales_frame().dropna(subset=['price']))
        self.region = gpd.GeoDataFrame({'name': ['Seattle']}, geometry=[box(*REGION_BOX)], crs="EPSG:4326")

    def test_keeps_points_inside(self):
        """Points outside or on the boundary are dropped."""
        inside = filter_to_region(self.sales, self.region)
        self.assertEqual(sorted(inside['id']), [1, 2, 3])

    def test_preserves_index_and_columns(self):
        """The join adds no columns and keeps the original index."""
        inside = filter_to_region(self.sales, self.region)
        self.assertNotIn('index_right', inside.columns)
        self.assertEqual(list(inside.columns), list(self.sales.columns))
        self.assertEqual(sorted(inside.index), [0, 1, 2])

    def test_reprojects_region(self):
        """A region in another CRS gives the same result."""
        inside = filter_to_region(self.sales, self.region.to_crs("EPSG:32610"))
        ids = set(inside['id'])
        self.assertTrue({1, 2, 3} <= ids)
        self.assertNotIn(4, ids)

    def test_overlapping_features_do_not_duplicate(self):
        """A sale covered by two features is kept once."""
        doubled = pd.concat([self.region, self.region], ignore_index=True)
        inside = filter_to_region(self.sales, doubled)
        self.assertEqual(len(inside), 3)


    def test_shared_index_labels_are_distinct_sales(self):
        """Sales that share an index label are all kept."""
        sales = self.sales.iloc[:2].copy()
        sales.index = [0, 0]
        inside = filter_to_region(sales, self.region)
        self.assertEqual(len(inside), 2)
        self.assertEqual(list(inside['id']), [1, 2])
        self.assertEqual(list(inside.index), [0, 0])


class TestSummary(unittest.TestCase):

    def test_summary_values(self):
        """Price statistics and the date range."""
        sales = make_sales_frame().dropna(subset=['price'])
        sales['date'] = pd.to_datetime(sales['date'])
        summary = summarize_sales(sales_to_geodataframe(sales)).set_index('Statistic')['Value']
        self.assertEqual(summary['Sales'], 5)
        self.assertEqual(summary['Max price'], 604000)
        self.assertEqual(summary['Min price'], 180000)
        self.assertEqual(summary['Median price'], 510000)
        self.assertEqual(summary['First sale'], '2014-10-13')
        self.assertEqual(summary['Last sale'], '2015-03-12')


if __name__ == '__main__':
    unittest.main()
