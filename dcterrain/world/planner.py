from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import NamedTuple

from dcterrain.config import StreamSettings, TerrainConfig
from dcterrain.world.density import DensityField, Footprint

log = logging.getLogger(__name__)


class JobKey(NamedTuple):
    """Stable identity of one mesh job; equal inputs always give equal keys."""

    cx: int
    cz: int
    band: int = 0
    tile: int = 0
    segment: int = 0

    def __str__(self) -> str:
        parts = [self.cx, self.band, self.cz]
        if self.tile > 0:
            parts.append(self.tile)
            if self.segment > 0:
                parts.append(self.segment)
        return ":".join(str(p) for p in parts)

    @property
    def chunk(self) -> tuple[int, int]:
        return self.cx, self.cz


@dataclass(frozen=True)
class BandInfo:
    index: int
    name: str
    top_y: float
    bottom_y: float
    segment: int = 0
    mask: float = 0.0


@dataclass(frozen=True)
class ChunkJob:
    key: JobKey
    origin: tuple[float, float, float]
    dims: tuple[int, int, int]
    voxel_size: float
    lod: int
    est_tris: int
    est_verts: int
    priority: int = 0
    band: BandInfo | None = None
    edge_length: float = 0.0

    @property
    def top_y(self) -> float:
        return self.origin[1] + self.dims[1] * self.voxel_size

    @property
    def segment(self) -> int:
        return self.band.segment if self.band else 0

    def same_work(self, other: "ChunkJob | None") -> bool:
        """True if `other` would extract exactly the same geometry."""
        return (
            other is not None
            and other.key == self.key
            and other.origin == self.origin
            and other.dims == self.dims
            and other.voxel_size == self.voxel_size
        )


def estimate_cost(x: int, y: int, z: int) -> tuple[int, int]:
    return x * y * z * 2, (x + 1) * (y + 1) * (z + 1)


def flat_dims(factor: float, base_cells: int, base_y: int) -> tuple[int, int, int]:
    xz = max(2, int(math.floor(base_cells / factor + 0.5)))
    return xz, max(2, int(math.floor(base_y / factor + 0.5))), xz


def split_job(job: ChunkJob, tri_cap: float, vert_cap: float, overlap_cells: int) -> list[ChunkJob]:
    """Slice an over-cap job along Y into overlapping segments, top first.

    Each segment i covers cells [max(0, top - max_cells), top) with
    top = total - i*stride, so there are ceil(total / stride) segments.
    """
    if job.est_tris <= tri_cap and job.est_verts <= vert_cap:
        return [job]

    x, total, z = job.dims
    per_layer_tris = x * z * 2
    layer_verts = (x + 1) * (z + 1)

    max_cells = total
    if math.isfinite(tri_cap):
        max_cells = min(max_cells, max(1, int(tri_cap // per_layer_tris)))
    if math.isfinite(vert_cap):
        max_cells = min(max_cells, max(1, int(vert_cap // layer_verts) - 1))
    if max_cells >= total:
        return [job]
    if max_cells <= 1 and (per_layer_tris > tri_cap or 2 * layer_verts > vert_cap):
        log.warning("job %s: a single cell layer exceeds per-job caps (%d tris)", job.key, per_layer_tris)

    overlap = min(max(0, overlap_cells), max(0, max_cells - 1))
    stride = max(1, max_cells - overlap)
    h = job.voxel_size

    segments: list[ChunkJob] = []
    for index, top in enumerate(range(total, 0, -stride)):
        bottom = max(0, top - max_cells)
        cells = top - bottom
        origin_y = job.origin[1] + bottom * h
        tris, verts = estimate_cost(x, cells, z)
        band = job.band or BandInfo(index=0, name="", top_y=job.top_y, bottom_y=job.origin[1])
        segments.append(
            replace(
                job,
                key=job.key._replace(segment=index),
                origin=(job.origin[0], origin_y, job.origin[2]),
                dims=(x, cells, z),
                est_tris=tris,
                est_verts=verts,
                band=replace(
                    band,
                    segment=index,
                    top_y=min(band.top_y, origin_y + cells * h),
                    bottom_y=max(band.bottom_y, origin_y),
                ),
            )
        )
    return segments


def job_order(job: ChunkJob) -> tuple:
    return (-job.top_y, job.segment, job.priority, job.key)


class JobPlanner:
    """Decomposes one chunk footprint into bounded-cost jobs."""

    def __init__(self, density: DensityField, settings: StreamSettings, terrain: TerrainConfig) -> None:
        self.density = density
        self.settings = settings
        self.terrain = terrain

    def plan(self, cx: int, cz: int, lod: int, factor: float, *, simplify: bool = False) -> list[ChunkJob]:
        s = self.settings
        footprint = Footprint.for_chunk(cx, cz, s.chunk_size)
        hr = self.density.height_range(footprint, s.baseline)

        edge_length = self.terrain.edge_length_for(lod)
        if simplify:
            edge_length *= self.terrain.pressure_factor

        if hr.feature_mask <= self.terrain.flat_threshold:
            return [self._flat_job(cx, cz, lod, factor, edge_length)]
        return self._band_jobs(cx, cz, lod, factor, hr.min_y, hr.max_y, hr.feature_mask, edge_length, simplify)

    def _flat_job(self, cx: int, cz: int, lod: int, factor: float, edge_length: float) -> ChunkJob:
        s = self.settings
        dims = flat_dims(factor, s.cells_per_axis, s.y_cells)
        tris, verts = estimate_cost(*dims)
        return ChunkJob(
            key=JobKey(cx, cz),
            origin=(cx * s.chunk_size, 0.0, cz * s.chunk_size),
            dims=dims,
            voxel_size=s.chunk_size / dims[0],
            lod=lod,
            est_tris=tris,
            est_verts=verts,
            priority=0,
            edge_length=edge_length,
        )

    def _band_jobs(
        self,
        cx: int,
        cz: int,
        lod: int,
        factor: float,
        min_y: float,
        max_y: float,
        mask: float,
        edge_length: float,
        simplify: bool,
    ) -> list[ChunkJob]:
        s = self.settings
        t = self.terrain

        eff = factor * float(t.mountain_lod_factor.get(lod, 1.0))
        if simplify:
            eff *= t.pressure_factor
        tiles = t.tiles_for(lod)
        cells_xz = max(2, int(math.floor(s.cells_per_axis / eff + 0.5)))
        tile_cells = max(2, int(math.floor(cells_xz / tiles + 0.5)))
        tile_span = s.chunk_size / tiles
        # voxel size follows the tile grid so tiles meet exactly at chunk edges
        vs = tile_span / tile_cells

        jobs: list[ChunkJob] = []
        current_top = max_y
        last = len(t.bands)
        for band_index, spec in enumerate(t.bands, start=1):
            bottom = min_y if band_index == last else max(min_y, current_top - spec.height_for(lod))
            # every band is emitted; a squeezed one keeps two cells and extends below min_y
            bottom = min(bottom, current_top - 2 * vs)
            snapped_bottom = math.floor(max(min(min_y, bottom), bottom - spec.overlap) / vs) * vs
            cells_y = max(2, int(math.ceil((current_top - snapped_bottom) / vs)))
            snapped_top = snapped_bottom + cells_y * vs
            total_y = cells_y + t.band_overlap_cells
            priority = t.priority_for(band_index, spec.name)
            info = BandInfo(index=band_index, name=spec.name, top_y=snapped_top, bottom_y=snapped_bottom, mask=mask)

            for tx in range(tiles):
                for tz in range(tiles):
                    tris, verts = estimate_cost(tile_cells, total_y, tile_cells)
                    job = ChunkJob(
                        key=JobKey(cx, cz, band=band_index, tile=band_index * 100 + tx * tiles + tz),
                        origin=(cx * s.chunk_size + tx * tile_span, snapped_bottom, cz * s.chunk_size + tz * tile_span),
                        dims=(tile_cells, total_y, tile_cells),
                        voxel_size=vs,
                        lod=lod,
                        est_tris=tris,
                        est_verts=verts,
                        priority=priority,
                        band=info,
                        edge_length=edge_length,
                    )
                    jobs.extend(split_job(job, t.job_tri_cap, t.job_vert_cap, t.segment_overlap_cells))
            current_top = bottom

        jobs.sort(key=job_order)
        return jobs
