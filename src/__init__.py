# plant-keypoint-sync - Source Package
"""
plant-keypoint-sync: keypoint annotation for plant image time series.

This package provides:
- Keypoint records matched across images by order and kind
- Forward propagation of add / move / delete / direction edits
- Longitudinal and cross-sectional direction assignment
- Per-series annotation statistics
"""

__version__ = "0.1.0"
