"""OpenSCAD render orchestrator.

Renders every view of a Design, one after another, by running the
``openscad`` binary once per view.  Each ``render_all`` call works in its own
throw-away temp directory, so nothing is shared between calls and the
directory is gone afterwards whatever happened.  Every process is bounded by
``render.timeout`` and can be stopped early through a ``threading.Event``.
"""

import logging
import re
import shutil
import subprocess
import tempfile
import time
import uuid
from pathlib import Path

from .errors import RenderCancelled, RenderFailed, RendererUnavailable
from .models import Design, RenderResult
from .views import resolve

logger = logging.getLogger(__name__)

MODEL_FILENAME = "model.scad"


def _safe_filename(name: str) -> str:
    return re.sub(r"[^a-z0-9_.-]+", "_", name.lower()).strip("._") or "view"


class OpenSCADRenderer:

    def __init__(self, config: dict, renders_root: str | Path | None = None):
        render_cfg = config.get("render", {})
        self.executable = render_cfg.get("openscad_executable", "openscad")
        width, height = render_cfg.get("image_size", [1024, 768])
        self.image_size = (int(width), int(height))
        self.colorscheme = render_cfg.get("colorscheme", "Cornfield")
        self.timeout = float(render_cfg.get("timeout", 120))
        self.poll_interval = float(render_cfg.get("poll_interval", 0.1))
        self.renders_root = Path(renders_root) if renders_root else None

    # ── Capability probe ──────────────────────────────────────────────────

    def probe(self) -> str:
        """Run ``openscad --version``; raise RendererUnavailable if that fails."""
        try:
            proc = subprocess.run([self.executable, "--version"],
                                  capture_output=True, text=True, timeout=30)
        except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired) as e:
            raise RendererUnavailable() from e
        if proc.returncode != 0:
            raise RendererUnavailable(
                f"OpenSCAD version check failed (exit {proc.returncode}): "
                f"{(proc.stderr or proc.stdout).strip()[:200]}"
            )
        # openscad prints its version on stderr
        return (proc.stderr or proc.stdout).strip()

    # ── Rendering ─────────────────────────────────────────────────────────

    def build_command(self, view, model_file: Path, output_file: Path) -> list[str]:
        camera = resolve(view)
        return [
            self.executable,
            "-o", str(output_file),
            f"--colorscheme={self.colorscheme}",
            f"--imgsize={self.image_size[0]},{self.image_size[1]}",
            "--viewall",
            "--projection=ortho",
            "--preview",
            f"--camera={camera.to_openscad_arg()}",
            str(model_file),
        ]

    def render_all(self, design: Design, cancel=None) -> list[RenderResult]:
        """Render every view of *design*, in order.

        Any failing view aborts the batch with ``RenderFailed``; no partial
        list is returned and no artifacts are kept.  *cancel* is an optional
        ``threading.Event``.
        """
        with tempfile.TemporaryDirectory(prefix="cad-forge-") as tmp:
            workspace = Path(tmp)
            model_file = workspace / MODEL_FILENAME
            model_file.write_text(design.code, encoding="utf-8")

            results = []
            for index, view in enumerate(design.views):
                if cancel is not None and cancel.is_set():
                    raise RenderCancelled(view.name)
                output_file = workspace / f"{index:02d}_{_safe_filename(view.name)}.png"
                cmd = self.build_command(view, model_file, output_file)
                logger.debug(f"Rendering view {view.name}: {' '.join(cmd)}")

                self._run(cmd, view.name, workspace / f"{index:02d}.log", cancel)
                try:
                    image = output_file.read_bytes()
                except OSError as e:
                    raise RenderFailed(view.name, "no image produced (%s)" % e) from e
                if not image:
                    raise RenderFailed(view.name, "empty image produced")
                results.append(RenderResult(view=view.name, image=image))

            if self.renders_root is not None:
                self._save_artifacts(results)
            return results

    def _run(self, cmd: list[str], view_name: str, log_file: Path, cancel=None):
        with open(log_file, "wb") as log:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=log)
            except OSError as e:
                raise RenderFailed(view_name, e) from e

            deadline = time.monotonic() + self.timeout
            while True:
                try:
                    returncode = proc.wait(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel is not None and cancel.is_set():
                    _stop(proc)
                    raise RenderCancelled(view_name)
                if time.monotonic() >= deadline:
                    _stop(proc)
                    raise RenderFailed(view_name, f"timed out after {self.timeout:g}s")

        if returncode != 0:
            stderr = log_file.read_text(encoding="utf-8", errors="replace").strip()
            raise RenderFailed(view_name, f"openscad exited with {returncode}: {stderr[-500:]}")

    def _save_artifacts(self, results: list[RenderResult]):
        render_dir = self.renders_root / uuid.uuid4().hex
        used = set()
        result = None
        try:
            render_dir.mkdir(parents=True, exist_ok=True)
            for result in results:
                stem = _safe_filename(result.view)
                name, n = f"{stem}.png", 1
                while name in used:
                    n += 1
                    name = f"{stem}_{n}.png"
                used.add(name)
                path = render_dir / name
                path.write_bytes(result.image)
                result.path = str(path)
                logger.info(f"Saved render to: {path}")
        except OSError as e:
            shutil.rmtree(render_dir, ignore_errors=True)
            for r in results:
                r.path = None
            view = result.view if result is not None else results[0].view
            raise RenderFailed(view, f"could not save image to {render_dir}: {e}") from e


def _stop(proc):
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
