"""
Default configuration for Carbon LULC library.
"""

DEFAULT_CONFIG = {
    # Project configuration
    "project": {
        "name": "carbon_lulc_project",
        "region": "Katingan",
        "description": "Land cover, AGB and CO2eq monitoring",
        "version": "1.0.0"
    },

    # Satellite data configuration
    "satellite": {
        "stac_url": "https://planetarycomputer.microsoft.com/api/stac/v1",
        "collection": "sentinel-2-l2a",
        "date_range": ["2023-01-01", "2024-12-31"],
        "cloud_cover_threshold": 20,
        "resolution": 10,
        "crs": None,  # Taken from the scenes when not set
        "assets": ["B02", "B03", "B04", "B08", "SCL"],
        "band_mapping": {
            "B02": "B2",
            "B03": "B3",
            "B04": "B4",
            "B08": "B8"
        },
        "bands": ["B2", "B3", "B4", "B8"],
        "band_roles": {
            "blue": "B2",
            "green": "B3",
            "red": "B4",
            "nir": "B8"
        },
        "scl_band": "SCL",
        # Cloud shadows, cloud medium probability, cloud high probability
        "cloud_mask_classes": [3, 8, 9]
    },

    # Spectral indices appended to the composite
    "indices": ["NDVI"],

    # Land cover classification
    "classification": {
        "classes": {
            "0": "Forest",
            "1": "Non-Forest",
            "2": "Water"
        },
        "algorithm": "random_forest",  # random_forest, gbm
        "n_trees": 100,
        "random_state": 42,
        "n_jobs": 1,
        "feature_bands": ["B2", "B3", "B4", "B8", "NDVI"],
        # CRS of labelled training point coordinates
        "points_crs": "EPSG:4326",
        "timeout_seconds": None
    },

    # NDVI -> AGB regression (t/ha)
    "biomass": {
        "ndvi_band": "NDVI",
        "slope": 150.0,
        "intercept": 50.0
    },

    # AGB -> carbon stock -> CO2eq
    "carbon": {
        "carbon_fraction": 0.47,
        "co2_conversion_factor": 3.67
    },

    # Zonal statistics
    "statistics": {
        "scale": 10,
        "max_pixels": 1e13,
        "reducers": ["mean", "min", "max", "stddev"]
    },

    # Frequency distributions
    "histogram": {
        "scale": 10,
        "num_pixels": 5000,
        "seed": 0,
        "start_at_zero": False,
        "bucket_width": {
            "AGB": 5,
            "CO2eq": 20
        }
    },

    # Output configuration
    "output": {
        "compression": "lzw",
        "nodata_value": -9999,
        "class_nodata": -9999,
        "output_directory": "./outputs"
    },

    # Processing configuration
    "processing": {
        "max_workers": 1,
        "tile_size": 512,
        "memory_budget_mb": 512,
        "timeout_seconds": None,
        "show_progress": False
    },

    # Logging configuration
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "file": None,  # Log to file if specified
        "console": True
    }
}
