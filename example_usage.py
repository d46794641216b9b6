"""
Example usage of the land cover, AGB and CO2eq pipeline.

This script runs the complete workflow for the Katingan regency
(Central Kalimantan) using Sentinel-2 L2A scenes from Planetary Computer.
"""

import json
import os

from carbon_lulc import AreaOfInterest, ConfigManager, LandCoverCarbonPipeline
from carbon_lulc.ml_analysis import LabeledPoint
from carbon_lulc.utils import setup_logging

# Training points (lon, lat) for the three land-cover classes
TRAINING_POINTS = {
    'Forest': [(112.7825, -0.9654), (113.5488, -2.6542), (113.3946, -2.1199), (113.2421, -2.4051)],
    'Non-Forest': [(112.6784, -1.1815), (113.4187, -1.8808), (113.5043, -1.8855), (113.3895, -1.9039)],
    'Water': [(113.3188, -2.4862), (113.2882, -3.1178), (113.3915, -1.9103), (112.6752, -1.1814)],
}


def main():
    """
    Example usage of the land cover and carbon workflow.
    """
    config_path = os.path.join(os.getcwd(), 'config.yaml')
    config = ConfigManager(config_path if os.path.exists(config_path) else {
        'project': {'name': 'katingan'},
        'satellite': {'date_range': ['2023-01-01', '2024-12-31'], 'cloud_cover_threshold': 20},
        'processing': {'max_workers': 4, 'show_progress': True, 'timeout_seconds': 3600},
    })
    setup_logging(config)

    # AOI polygon, e.g. the Katingan boundary exported as GeoJSON
    aoi = AreaOfInterest.from_file('./00_input/Katingan.geojson')
    points = [
        LabeledPoint(x=lon, y=lat, label=label)
        for label, coords in TRAINING_POINTS.items()
        for lon, lat in coords
    ]

    pipeline = LandCoverCarbonPipeline(config)
    print("Starting land cover, AGB & CO2eq analysis...")
    result = pipeline.run(aoi, points)

    summary = result.summary()
    print("\n✅ Workflow completed" + (" with failures" if result.failures else " successfully"))
    print(f"Scenes composited: {summary['n_scenes']}")
    print(f"Training samples: {summary['training_samples']} "
          f"({summary['dropped_training_points']} dropped)")

    print("\n📊 CO2eq Statistics (t/ha):")
    print(json.dumps(summary['zonal_stats'].get('CO2eq'), indent=2))

    # Export rasters for use in a GIS
    paths = pipeline.export(result)
    for name, path in paths.items():
        print(f"  {name}: {path}")

    return result


if __name__ == '__main__':
    main()
