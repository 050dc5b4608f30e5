"""Structured builder for FFmpeg ``-filter_complex`` expressions.

Filters are built as small immutable nodes and only turned into FFmpeg's
textual syntax in ``render()``. All user-provided text goes through
``escape_filter_text`` so it cannot break out of its option value.

FFmpeg unescapes a filter graph twice: the graph parser first splits the
description on ``[ ] , ;`` (honouring backslashes and single quotes), then the
filter's option parser splits the arguments on ``:`` (again honouring
backslashes and quotes). User text therefore needs both levels applied, the
option level first.
"""

import re
from dataclasses import dataclass, field

_LABEL_RE = re.compile(r"^[A-Za-z0-9_:]+$")

# Characters that terminate or quote an option value inside a filter's args.
_OPTION_SPECIALS = ("\\", "'", ":")
# Characters that terminate or quote a filter's args inside the graph.
_GRAPH_SPECIALS = ("\\", "'", "[", "]", ",", ";")


def _backslash_escape(value: str, specials: tuple[str, ...]) -> str:
    return "".join("\\" + ch if ch in specials else ch for ch in value)


def escape_option_value(value: str) -> str:
    """Escape a value for a filter's ``key=value:key=value`` argument list."""
    return _backslash_escape(value, _OPTION_SPECIALS)


def escape_graph_value(value: str) -> str:
    """Escape a filter argument string for embedding in a filter graph."""
    return _backslash_escape(value, _GRAPH_SPECIALS)


def escape_filter_text(value: str) -> str:
    """Escape arbitrary text for use as an option value inside a filter graph."""
    return escape_graph_value(escape_option_value(value))


@dataclass(frozen=True)
class Filter:
    """A single filter such as ``scale=1080:1920``.

    ``args`` holds ``(key, value)`` pairs; a ``None`` key renders the value
    positionally. Values must already be escaped.
    """

    name: str
    args: tuple[tuple[str | None, str], ...] = ()

    def render(self) -> str:
        if not self.args:
            return self.name
        parts = [value if key is None else f"{key}={value}" for key, value in self.args]
        return f"{self.name}=" + ":".join(parts)


@dataclass(frozen=True)
class FilterChain:
    """Comma-separated filters with labelled inputs and outputs."""

    inputs: tuple[str, ...]
    filters: tuple[Filter, ...]
    outputs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.filters:
            raise ValueError("A filter chain needs at least one filter")
        for label in (*self.inputs, *self.outputs):
            if not _LABEL_RE.match(label):
                raise ValueError(f"Invalid pad label: {label!r}")

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return ins + ",".join(f.render() for f in self.filters) + outs


@dataclass
class FilterGraph:
    """Semicolon-separated chains forming a complete ``-filter_complex``."""

    chains: list[FilterChain] = field(default_factory=list)

    def add(self, chain: FilterChain) -> "FilterGraph":
        self.chains.append(chain)
        return self

    def render(self) -> str:
        if not self.chains:
            raise ValueError("Filter graph is empty")
        return ";".join(chain.render() for chain in self.chains)


# ============================================================================
# Filter constructors
# ============================================================================


def scale(width: int, height: int, *, fit: str = "decrease") -> Filter:
    """Scale into ``width``x``height`` keeping the aspect ratio."""
    return Filter("scale", ((None, str(width)), (None, str(height)), ("force_original_aspect_ratio", fit)))


def pad(width: int, height: int, *, color: str = "black") -> Filter:
    """Pad to exactly ``width``x``height`` with the picture centred."""
    return Filter(
        "pad",
        (
            (None, str(width)),
            (None, str(height)),
            (None, "(ow-iw)/2"),
            (None, "(oh-ih)/2"),
            ("color", escape_filter_text(color)),
        ),
    )


def setsar(ratio: str = "1") -> Filter:
    return Filter("setsar", ((None, ratio),))


def fps(rate: int) -> Filter:
    return Filter("fps", ((None, str(rate)),))


def null() -> Filter:
    return Filter("null")


def concat(count: int, *, video: int = 1, audio: int = 0) -> Filter:
    return Filter("concat", (("n", str(count)), ("v", str(video)), ("a", str(audio))))


def drawtext(
    text: str,
    *,
    font_size: int = 50,
    font_color: str = "white",
    x: str = "(w-text_w)/2",
    y: str = "h-th-50",
    box_color: str | None = "black@0.5",
    box_border: int = 10,
    font_file: str | None = None,
) -> Filter:
    """Burn ``text`` into the frame.

    ``expansion=none`` stops drawtext from interpreting ``%{...}`` sequences
    in user text.
    """
    args: list[tuple[str | None, str]] = []
    if font_file:
        args.append(("fontfile", escape_filter_text(font_file)))
    args += [
        ("text", escape_filter_text(text)),
        ("expansion", "none"),
        ("fontsize", str(font_size)),
        ("fontcolor", escape_filter_text(font_color)),
        ("x", x),
        ("y", y),
    ]
    if box_color:
        args += [
            ("box", "1"),
            ("boxcolor", escape_filter_text(box_color)),
            ("boxborderw", str(box_border)),
        ]
    return Filter("drawtext", tuple(args))
