"""View geometry — map a named ViewSpec onto OpenSCAD camera parameters.

Convention
──────────
Everything is expressed as an eye/center pair in OpenSCAD world space
(Z up, the "front" of a part faces -Y).  A view's angle triple is read as
``(azimuth, elevation, tilt)`` in degrees:

  * azimuth 0 looks at the front (eye on -Y); positive azimuth swings the
    eye toward +X, so azimuth 90 is the right-hand view
  * elevation is measured up from the XY plane; 90 looks straight down
  * tilt slides the look-at center sideways along the camera's right
    vector, by ``distance * TILT_OFFSET_RATIO * sin(tilt)``

Canonical view names (front, top, iso, ...) are looked up in
``VIEW_POLICIES`` and use fixed azimuth/elevation pairs in the same
convention, ignoring whatever angles the model asked for.
"""

from dataclasses import dataclass

import numpy as np

from .models import ViewSpec

# Closest the camera may get to the look-at point, in model units (mm).
MIN_VIEW_DISTANCE = 20.0

TILT_OFFSET_RATIO = 0.1

# name → (azimuth, elevation)
VIEW_POLICIES = {
    "front":     (0.0, 0.0),
    "back":      (180.0, 0.0),
    "right":     (90.0, 0.0),
    "left":      (-90.0, 0.0),
    "top":       (0.0, 90.0),
    "bottom":    (0.0, -90.0),
    # Shallower than a true isometric (35.26°) so side walls stay readable.
    "iso":       (45.0, 30.0),
    "isometric": (45.0, 30.0),
}

_WORLD_UP = np.array([0.0, 0.0, 1.0])
_VERTICAL_EPS = 1e-6


@dataclass(frozen=True)
class CameraParams:
    eye: tuple[float, float, float]
    center: tuple[float, float, float]
    up: tuple[float, float, float]
    distance: float

    def to_openscad_arg(self) -> str:
        """``eyex,eyey,eyez,centerx,centery,centerz`` for ``--camera=``."""
        return ",".join(_fmt(v) for v in self.eye + self.center)


def _fmt(value: float) -> str:
    # "+ 0.0" folds -0.0 into 0.0
    return repr(round(float(value), 4) + 0.0)


def _as_tuple(vec) -> tuple[float, float, float]:
    return tuple(round(float(v), 6) + 0.0 for v in vec)


def _direction(azimuth_deg: float, elevation_deg: float) -> np.ndarray:
    az, el = np.radians(azimuth_deg), np.radians(elevation_deg)
    return np.array([
        np.cos(el) * np.sin(az),
        -np.cos(el) * np.cos(az),
        np.sin(el),
    ])


def clamp_distance(distance: float) -> float:
    return max(float(distance), MIN_VIEW_DISTANCE)


def resolve(view: ViewSpec) -> CameraParams:
    """Turn *view* into renderer-ready camera parameters.

    Deterministic and side-effect free; *view* is assumed to be valid
    (ViewSpec enforces that on construction).
    """
    distance = clamp_distance(view.distance)

    policy = VIEW_POLICIES.get(view.name)
    if policy is not None:
        azimuth, elevation = policy
        tilt = 0.0
    else:
        azimuth, elevation, tilt = view.angle

    direction = _direction(azimuth, elevation)

    # Right vector of a camera looking back along -direction with Z up.
    az = np.radians(azimuth)
    right = np.array([np.cos(az), np.sin(az), 0.0])

    center = right * (distance * TILT_OFFSET_RATIO * np.sin(np.radians(tilt)))
    eye = center + direction * distance

    if abs(abs(direction @ _WORLD_UP) - 1.0) < _VERTICAL_EPS:
        # Looking straight up/down: world Z is degenerate, use screen-up = +Y
        # (top view) or -Y (bottom view) so the front stays at the bottom edge.
        up = np.array([0.0, 1.0, 0.0]) if direction[2] > 0 else np.array([0.0, -1.0, 0.0])
    else:
        up = _WORLD_UP

    return CameraParams(
        eye=_as_tuple(eye),
        center=_as_tuple(center),
        up=_as_tuple(up),
        distance=distance,
    )


def resolve_all(views) -> list[CameraParams]:
    return [resolve(v) for v in views]
