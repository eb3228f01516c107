"""
Stand-in flow solver.

The production solver is an external program; this module provides a
small deterministic replacement so the service can be exercised end to
end.  It works entirely in grid units:

* The obstacle mask is the set of cell centres where the SDF is negative.
* A stream function is relaxed towards potential flow around the mask
  with a few Jacobi sweeps per step, starting from uniform inflow.
* Vorticity generated in the wall layer is advected downstream with a
  semi-Lagrangian step and diffused with a viscosity derived from the
  Reynolds number.

Frames show the non-dimensional vorticity ``omega * L / U`` with the
request's colour limits.  None of this is meant to be physically
accurate.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

import numpy as np
from PIL import Image

from ..api.models import SimulationParameters
from .geometry import GeometryResult

logger = logging.getLogger(__name__)

# Inflow speed in cells per step.
LATTICE_VELOCITY = 0.5
# Explicit diffusion is stable for nu * dt <= 0.25 on a unit grid.
MAX_LATTICE_VISCOSITY = 0.2
RELAXATION_SWEEPS = 4
PROGRESS_EVERY = 5

FrameCallback = Callable[[Image.Image, int], bool]


def frame_count(params: SimulationParameters) -> int:
    """Number of frames emitted for a request, at least one."""
    return params.frame_count


def steps_per_frame(params: SimulationParameters) -> int:
    return max(1, int(round(params.frame_interval / params.time_step)))


def _dtype(params: SimulationParameters) -> type:
    return np.float64 if params.precision_type == "Float64" else np.float32


def _bilinear(field: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    ny, nx = field.shape
    xs = np.clip(xs, 0.0, nx - 1.0)
    ys = np.clip(ys, 0.0, ny - 1.0)
    x0 = np.floor(xs).astype(np.intp)
    y0 = np.floor(ys).astype(np.intp)
    x1 = np.minimum(x0 + 1, nx - 1)
    y1 = np.minimum(y0 + 1, ny - 1)
    fx = xs - x0
    fy = ys - y0
    top = field[y0, x0] * (1 - fx) + field[y0, x1] * fx
    bottom = field[y1, x0] * (1 - fx) + field[y1, x1] * fx
    return top * (1 - fy) + bottom * fy


def colorize(values: np.ndarray, vmin: float, vmax: float) -> np.ndarray:
    """Map a scalar field to a blue-white-red ``uint8`` RGB array."""
    span = vmax - vmin if vmax != vmin else 1.0
    t = np.clip((values - vmin) / span, 0.0, 1.0)
    r = np.clip(2.0 * t, 0.0, 1.0)
    b = np.clip(2.0 - 2.0 * t, 0.0, 1.0)
    rgb = np.stack([r, np.minimum(r, b), b], axis=-1)
    return (rgb * 255.0).astype(np.uint8)


class FlowSolver:
    """Grid state of one solve.

    Args:
        params: Request parameters.
        geometry: Loaded geometry; its SDF is evaluated in grid units.
    """

    def __init__(self, params: SimulationParameters, geometry: GeometryResult) -> None:
        self.params = params
        self.dtype = _dtype(params)
        self.nx = params.grid_resolution_x
        self.ny = params.grid_resolution_y
        ys, xs = np.mgrid[0:self.ny, 0:self.nx]
        self.xs = xs.astype(self.dtype)
        self.ys = ys.astype(self.dtype)

        centres = np.column_stack([(xs + 0.5).ravel(), (ys + 0.5).ravel()])
        self.body = np.asarray(geometry.sdf(centres)).reshape(self.ny, self.nx) < 0.0
        fluid_neighbour = np.zeros_like(self.body)
        fluid_neighbour[1:, :] |= self.body[:-1, :]
        fluid_neighbour[:-1, :] |= self.body[1:, :]
        fluid_neighbour[:, 1:] |= self.body[:, :-1]
        fluid_neighbour[:, :-1] |= self.body[:, 1:]
        self.wall = fluid_neighbour & ~self.body

        self.u0 = self.dtype(LATTICE_VELOCITY)
        self.length = max(1.0, params.object_scale_factor * min(self.nx, self.ny))
        self.nu = min(MAX_LATTICE_VISCOSITY, LATTICE_VELOCITY * self.length / params.reynolds_number)

        self.psi = (self.u0 * self.ys).astype(self.dtype)
        self.psi_body = self.dtype(self.u0 * (self.ys[self.body].mean() if self.body.any() else 0.0))
        self.omega = np.zeros((self.ny, self.nx), dtype=self.dtype)
        self.u = np.zeros_like(self.omega)
        self.v = np.zeros_like(self.omega)
        self.steps = 0
        logger.debug(
            "Solver grid %dx%d, %d body cells, nu=%.4f (lattice units)",
            self.nx,
            self.ny,
            int(self.body.sum()),
            self.nu,
        )

    def _relax(self) -> None:
        psi = self.psi
        for _ in range(RELAXATION_SWEEPS):
            psi[1:-1, 1:-1] = 0.25 * (psi[:-2, 1:-1] + psi[2:, 1:-1] + psi[1:-1, :-2] + psi[1:-1, 2:])
            psi[:, 0] = self.u0 * self.ys[:, 0]
            psi[0, :] = 0.0
            psi[-1, :] = self.u0 * (self.ny - 1)
            psi[:, -1] = psi[:, -2]
            psi[self.body] = self.psi_body

    def _velocity(self) -> None:
        dpsi_dy, dpsi_dx = np.gradient(self.psi)
        self.u = dpsi_dy.astype(self.dtype)
        self.v = (-dpsi_dx).astype(self.dtype)
        self.u[self.body] = 0.0
        self.v[self.body] = 0.0

    def step(self) -> None:
        """Advance the flow by one time step."""
        self._relax()
        self._velocity()
        _, dv_dx = np.gradient(self.v)
        du_dy, _ = np.gradient(self.u)
        wall_vorticity = dv_dx - du_dy

        advected = _bilinear(self.omega, self.xs - self.u, self.ys - self.v)
        lap = np.zeros_like(advected)
        lap[1:-1, 1:-1] = (
            advected[:-2, 1:-1] + advected[2:, 1:-1] + advected[1:-1, :-2] + advected[1:-1, 2:]
            - 4.0 * advected[1:-1, 1:-1]
        )
        omega = advected + self.nu * lap
        omega[self.wall] = wall_vorticity[self.wall]
        omega[self.body] = 0.0
        self.omega = omega.astype(self.dtype)
        self.steps += 1

    def render(self) -> Image.Image:
        """Render the current vorticity as an RGB image, y pointing up."""
        params = self.params
        scaled = self.omega * (self.length / LATTICE_VELOCITY)
        rgb = colorize(scaled, params.color_scale_min, params.color_scale_max)
        if params.show_body:
            rgb[self.body] = 0
        return Image.fromarray(np.ascontiguousarray(np.flipud(rgb)))

    def frames(self) -> Iterator[Image.Image]:
        """Yield one rendered frame per ``frame_interval`` of simulated time."""
        total = frame_count(self.params)
        per_frame = steps_per_frame(self.params)
        for index in range(total):
            for _ in range(per_frame):
                self.step()
            if (index + 1) % PROGRESS_EVERY == 0:
                logger.info("Solve progress %.1f%% (frame %d/%d)", 100.0 * (index + 1) / total, index + 1, total)
            yield self.render()


def encode_gif(frames: Iterable[Image.Image], path: Path, frame_duration_ms: int) -> Path:
    """Write ``frames`` as a looping GIF.

    ``frames`` may be a generator; frames after the first are pulled by
    the encoder one at a time.
    """
    frames = iter(frames)
    first = next(frames, None)
    if first is None:
        raise ValueError("Cannot encode a GIF without frames")
    first.save(
        path,
        save_all=True,
        append_images=frames,
        duration=frame_duration_ms,
        loop=0,
    )
    return path


@dataclass(frozen=True)
class SolveOutput:
    """What a finished solve left in scratch space.

    Attributes:
        gif_path: Encoded animation, not yet published.
        frame_count: Frames in the animation.
        live_frames: Live frame writes that succeeded.
    """

    gif_path: Path
    frame_count: int
    live_frames: int


def run_solve(
    params: SimulationParameters,
    geometry: GeometryResult,
    scratch_dir: Path,
    on_frame: Optional[FrameCallback] = None,
) -> SolveOutput:
    """Run a solve and encode its animation into ``scratch_dir``.

    Args:
        params: Request parameters.
        geometry: Loaded geometry.
        scratch_dir: Directory for the encoded GIF.
        on_frame: Called with every frame and its index; returns whether a
            live frame was written (a falsy return is not an error).

    Returns:
        A :class:`SolveOutput` pointing at the unpublished GIF.
    """
    solver = FlowSolver(params, geometry)
    counts = {"frames": 0, "live": 0}

    def emitted() -> Iterator[Image.Image]:
        for index, frame in enumerate(solver.frames()):
            counts["frames"] += 1
            if on_frame is not None and on_frame(frame, index):
                counts["live"] += 1
            yield frame

    scratch_dir.mkdir(parents=True, exist_ok=True)
    gif_path = scratch_dir / f"solve_{uuid.uuid4().hex}.gif"
    duration_ms = max(20, int(round(params.frame_interval * 1000)))
    encode_gif(emitted(), gif_path, duration_ms)
    logger.info("Encoded %d frame(s) to %s", counts["frames"], gif_path)
    return SolveOutput(gif_path=gif_path, frame_count=counts["frames"], live_frames=counts["live"])
