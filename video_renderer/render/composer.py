"""Turns a validated render request into an FFmpeg encode job.

Two layouts are supported:

- Text overlay: the background video with the title burned in near the
  bottom edge, re-encoded to H.264/AAC.
- Image sequence: every image looped for a fixed duration, scaled and padded
  to the slideshow frame, optionally captioned, then concatenated in request
  order. The total duration is declared with ``-t`` because looped image
  inputs never end on their own.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Sequence

from video_renderer.config import Settings
from video_renderer.exceptions import CompositionError
from video_renderer.render import filtergraph as fg
from video_renderer.render.fetcher import FetchedAsset
from video_renderer.schemas.render import ImageSequenceRequest, RenderRequest, TextOverlayRequest

logger = logging.getLogger(__name__)

VIDEO_OUTPUT_LABEL = "vout"


def format_seconds(value: float) -> str:
    """Render seconds the way FFmpeg duration options accept them."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text or "0"


@dataclass(frozen=True)
class EncodeInput:
    """One ``-i`` input and the options that precede it."""

    path: Path
    loop: bool = False
    duration_s: float | None = None

    def to_args(self) -> list[str]:
        args: list[str] = []
        if self.loop:
            args += ["-loop", "1"]
        if self.duration_s is not None:
            args += ["-t", format_seconds(self.duration_s)]
        args += ["-i", str(self.path)]
        return args


@dataclass(frozen=True)
class EncodeJob:
    """Immutable description of one FFmpeg run."""

    kind: str
    inputs: tuple[EncodeInput, ...]
    filter_graph: str
    maps: tuple[str, ...]
    output_option_pairs: tuple[tuple[str, str], ...]
    output_path: Path
    duration_s: float | None = None

    @property
    def output_options(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self.output_option_pairs))


class JobComposer:
    """Builds encode jobs using the render settings."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def compose(
        self,
        request: RenderRequest,
        assets: Sequence[FetchedAsset],
        output_path: Path,
    ) -> EncodeJob:
        if isinstance(request, TextOverlayRequest):
            job = self.compose_text_overlay(request, assets, output_path)
        elif isinstance(request, ImageSequenceRequest):
            job = self.compose_image_sequence(request, assets, output_path)
        else:
            raise CompositionError(f"Unsupported request type: {type(request).__name__}")

        logger.info(
            f"[COMPOSE] {job.kind}: {len(job.inputs)} input(s), "
            f"duration={job.duration_s if job.duration_s is not None else 'source'}"
        )
        logger.debug(f"[COMPOSE] filter_complex: {job.filter_graph}")
        return job

    # ------------------------------------------------------------------
    # Text overlay
    # ------------------------------------------------------------------

    def compose_text_overlay(
        self,
        request: TextOverlayRequest,
        assets: Sequence[FetchedAsset],
        output_path: Path,
    ) -> EncodeJob:
        if len(assets) != 1:
            raise CompositionError(f"Text overlay needs exactly one background video, got {len(assets)}")

        title = request.title.strip()
        if title:
            overlay = self._caption_filter(title)
        else:
            overlay = fg.null()
        graph = fg.FilterGraph().add(fg.FilterChain(("0:v",), (overlay,), (VIDEO_OUTPUT_LABEL,)))

        return EncodeJob(
            kind=request.kind,
            inputs=(EncodeInput(assets[0].local_path),),
            filter_graph=graph.render(),
            maps=(f"[{VIDEO_OUTPUT_LABEL}]", "0:a?"),
            output_option_pairs=(
                ("-c:v", "libx264"),
                ("-c:a", "aac"),
                ("-pix_fmt", "yuv420p"),
                ("-movflags", "+faststart"),
            ),
            output_path=output_path,
        )

    # ------------------------------------------------------------------
    # Image sequence
    # ------------------------------------------------------------------

    def compose_image_sequence(
        self,
        request: ImageSequenceRequest,
        assets: Sequence[FetchedAsset],
        output_path: Path,
    ) -> EncodeJob:
        if not request.images:
            raise CompositionError("No images provided")
        if len(assets) != len(request.images):
            raise CompositionError(f"Expected {len(request.images)} images, got {len(assets)}")

        captions = caption_slots(request.captions, len(request.images))
        ordered = sorted(assets, key=lambda a: a.ordinal)

        s = self.settings
        per_image = s.seconds_per_image
        graph = fg.FilterGraph()
        labels: list[str] = []
        for index, (asset, caption) in enumerate(zip(ordered, captions)):
            filters = [
                fg.scale(s.slideshow_width, s.slideshow_height),
                fg.pad(s.slideshow_width, s.slideshow_height),
                fg.setsar("1"),
                fg.fps(s.slideshow_fps),
            ]
            if caption:
                filters.append(self._caption_filter(caption))
            label = f"v{index}"
            graph.add(fg.FilterChain((f"{index}:v",), tuple(filters), (label,)))
            labels.append(label)

        graph.add(fg.FilterChain(tuple(labels), (fg.concat(len(labels)),), (VIDEO_OUTPUT_LABEL,)))

        total = per_image * len(ordered)
        return EncodeJob(
            kind=request.kind,
            inputs=tuple(EncodeInput(a.local_path, loop=True, duration_s=per_image) for a in ordered),
            filter_graph=graph.render(),
            maps=(f"[{VIDEO_OUTPUT_LABEL}]",),
            output_option_pairs=(
                ("-c:v", "libx264"),
                ("-preset", s.slideshow_preset),
                ("-pix_fmt", "yuv420p"),
                ("-r", str(s.slideshow_fps)),
                ("-t", format_seconds(total)),
                ("-movflags", "+faststart"),
            ),
            output_path=output_path,
            duration_s=total,
        )

    def _caption_filter(self, text: str) -> fg.Filter:
        s = self.settings
        return fg.drawtext(
            text,
            font_size=s.caption_font_size,
            font_color=s.caption_font_color,
            y=f"h-th-{s.caption_bottom_margin}",
            box_color=s.caption_box_color or None,
            box_border=s.caption_box_border,
            font_file=s.caption_font_file or None,
        )


def caption_slots(captions: Sequence[str], image_count: int) -> list[str | None]:
    """Pair captions with images by position.

    Missing captions leave their image uncaptioned; blank captions count as
    missing. More captions than images cannot be placed and are rejected.
    """
    if len(captions) > image_count:
        raise CompositionError(f"Got {len(captions)} captions for {image_count} images")
    slots: list[str | None] = [None] * image_count
    for i, caption in enumerate(captions):
        text = caption.strip()
        slots[i] = text or None
    return slots
