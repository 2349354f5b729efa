"""Data model for the design loop — views, designs, renders, iterations, sessions.

Plain dataclasses plus JSON-safe dict conversion used by the session store.
The persisted document keeps the original camelCase keys
(``originalPrompt``, ``changesSummary``) so older state files still load.
"""

import base64
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class ViewSpec:
    """A named camera viewpoint: (azimuth, elevation, tilt) degrees + distance."""
    name: str
    angle: tuple[float, float, float]
    distance: float = 100

    def __post_init__(self):
        name = (self.name or "").strip().lower()
        if not name:
            raise ValueError("view name must not be empty")
        angle = tuple(float(a) for a in self.angle)
        if len(angle) != 3:
            raise ValueError("view %r needs exactly 3 angle components, got %d"
                             % (name, len(angle)))
        if not all(math.isfinite(a) for a in angle):
            raise ValueError("view %r has non-finite angle %r" % (name, angle))
        if not math.isfinite(self.distance) or self.distance <= 0:
            raise ValueError("view %r needs a positive distance, got %r"
                             % (name, self.distance))
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "angle", angle)

    def to_dict(self) -> dict:
        return {"name": self.name, "angle": list(self.angle), "distance": self.distance}

    @classmethod
    def from_dict(cls, data: dict) -> "ViewSpec":
        return cls(name=data["name"], angle=tuple(data["angle"]),
                   distance=data.get("distance", 100))


@dataclass
class Design:
    """Generated OpenSCAD source plus the views it should be rendered from."""
    code: str
    views: list[ViewSpec]
    changes: str | None = None

    def __post_init__(self):
        self.code = (self.code or "").strip()
        if not self.code:
            raise ValueError("design code must not be empty")
        if not self.views:
            raise ValueError("design needs at least one view")


@dataclass
class RenderResult:
    view: str
    image: bytes
    path: str | None = None

    @property
    def image_base64(self) -> str:
        return base64.b64encode(self.image).decode("ascii")

    def to_dict(self) -> dict:
        return {"view": self.view, "image": self.image_base64, "path": self.path}

    @classmethod
    def from_dict(cls, data: dict) -> "RenderResult":
        return cls(view=data["view"],
                   image=base64.b64decode(data["image"]),
                   path=data.get("path"))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Iteration:
    """One create/feedback cycle: the code it produced and, later, its renders."""
    code: str
    views: list[ViewSpec] = field(default_factory=list)
    renders: list[RenderResult] = field(default_factory=list)
    feedback: str | None = None
    changes_summary: str | None = None
    timestamp: str = field(default_factory=_utc_now)

    @property
    def is_rendered(self) -> bool:
        return bool(self.renders)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "code": self.code,
            "views": [v.to_dict() for v in self.views],
            "renders": [r.to_dict() for r in self.renders],
            "feedback": self.feedback,
            "changesSummary": self.changes_summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Iteration":
        return cls(
            code=data["code"],
            views=[ViewSpec.from_dict(v) for v in data.get("views") or []],
            renders=[RenderResult.from_dict(r) for r in data.get("renders") or []],
            feedback=data.get("feedback"),
            # "changes" is the key written by the first releases
            changes_summary=data.get("changesSummary", data.get("changes")),
            timestamp=data.get("timestamp") or _utc_now(),
        )


@dataclass
class Session:
    """Ordered, append-only history of iterations for one original prompt."""
    original_prompt: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    iterations: list[Iteration] = field(default_factory=list)

    @property
    def latest(self) -> Iteration | None:
        return self.iterations[-1] if self.iterations else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "originalPrompt": self.original_prompt,
            "iterations": [it.to_dict() for it in self.iterations],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            id=str(data["id"]),
            original_prompt=data["originalPrompt"],
            iterations=[Iteration.from_dict(it) for it in data.get("iterations") or []],
        )
