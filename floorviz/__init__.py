from floorviz.compositor import composite, shade_pixels
from floorviz.grids import DimensionMismatchError, FloorVizError, InvalidInputError, MaskDecodeError
from floorviz.homography import estimate_homography, homography_from_correspondences, homography_from_plane
from floorviz.illumination import compute_illumination
from floorviz.masks import MaskSet, SegmentationResult, build_masks
from floorviz.occlusion import refine_occlusion_mask
from floorviz.patterns import PatternKind, PatternParams, PlankSize
from floorviz.plane import PlaneEquation, fit_floor_plane
from floorviz.scene import SceneState, build_scene, export_scene, import_scene, render_scene

__version__ = "0.1.0"
