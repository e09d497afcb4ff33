from qfluentwidgets import (
    QConfig,
    qconfig,
    BoolValidator,
    ConfigItem,
    EnumSerializer,
    FolderValidator,
    OptionsConfigItem,
    OptionsValidator,
    RangeConfigItem,
    RangeValidator,
)

from src import __version__
from src.utils.keypoint_sync.direction_controller import DirectionMode
from src.utils.keypoint_sync.records import MAX_DIRECTIONS_LIMIT
from src.utils.keypoint_sync.sync_engine import MovePolicy


class Config(QConfig):
    """
    Configuration for keypoint annotation and synchronization.
    """

    # Propagate edits to later images of the time series
    syncEnabled = ConfigItem("Sync", "SyncEnabled", False, BoolValidator())

    # What a propagated move does when a later image lacks the keypoint
    movePolicy = OptionsConfigItem(
        "Sync", "MovePolicy", MovePolicy.SKIP,
        OptionsValidator(MovePolicy), EnumSerializer(MovePolicy)
    )

    # Traversal used by the auto direction button
    autoDirectionMode = OptionsConfigItem(
        "Direction", "AutoDirectionMode", DirectionMode.LONGITUDINAL,
        OptionsValidator(DirectionMode), EnumSerializer(DirectionMode)
    )

    # Upper bound offered when creating multi-direction keypoints
    maxDirectionsLimit = RangeConfigItem(
        "Direction", "MaxDirectionsLimit", MAX_DIRECTIONS_LIMIT,
        RangeValidator(1, MAX_DIRECTIONS_LIMIT)
    )

    # Annotation JSON directory
    annotationDir = ConfigItem(
        "Annotation", "AnnotationDir", "annotations", FolderValidator()
    )


YEAR = 2025
VERSION = __version__

cfg = Config()
qconfig.load('config.json', cfg)
