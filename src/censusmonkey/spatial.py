"""Geometry-derived columns for boundary files."""

import geopandas as gpd
import pandas as pd

# USA Contiguous Albers Equal Area Conic
EQUAL_AREA_CRS = "ESRI:102003"

SQ_KM_TO_SQ_MI = 0.386102


def boundary_metrics(gdf: gpd.GeoDataFrame) -> pd.DataFrame:
    """Centroid coordinates and area for each polygon.

    Areas and projected centroids (``x``/``y`` in meters) are computed in an
    equal-area projection; ``longitude``/``latitude`` are the same centroids
    in WGS84.

    Returns:
        DataFrame with GEOID, x, y, longitude, latitude, area_sq_km and
        area_sq_mi
    """
    projected = gdf.to_crs(EQUAL_AREA_CRS)
    centroids = projected.geometry.centroid
    geographic = centroids.to_crs("EPSG:4326")

    area_sq_km = projected.geometry.area / 1e6
    return pd.DataFrame(
        {
            "GEOID": projected["GEOID"].to_numpy(),
            "x": centroids.x.to_numpy(),
            "y": centroids.y.to_numpy(),
            "longitude": geographic.x.to_numpy(),
            "latitude": geographic.y.to_numpy(),
            "area_sq_km": area_sq_km.to_numpy(),
            "area_sq_mi": (area_sq_km * SQ_KM_TO_SQ_MI).to_numpy(),
        }
    )
