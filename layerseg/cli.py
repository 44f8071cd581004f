"""Command line interface for layerseg."""
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
from skimage.color import hsv2rgb

from layerseg.color_map import ColorMap, consolidate_scribbles
from layerseg.occlusion_graph import OcclusionGraph
from layerseg.raster_ingest import load_intensity, save_image, save_silhouette
from layerseg.segmentation import SegmentationEngine, background_frame, scribble_ids
from layerseg.shape_fill import ShapeFill
from layerseg.types import (
    MAX_SEGMENTS_PER_KIND,
    UNASSIGNED,
    EdgeType,
    LayerSegError,
    SegmentationConfig,
    ShapeFillConfig,
    is_soft,
)

logger = logging.getLogger(__name__)

EDGE_TYPES = {
    'default': EdgeType.DEFAULT,
    'merge': EdgeType.FORCED_MERGE,
    'split': EdgeType.FORCED_SPLIT,
}


def parse_edge(text: str) -> Tuple[int, int, EdgeType]:
    """Parse FROM:TO[:TYPE] where TO is the occluding segment."""
    parts = text.split(':')
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(f"Invalid edge '{text}', expected FROM:TO[:TYPE]")
    try:
        source, target = int(parts[0]), int(parts[1])
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid segment ids in edge '{text}'")
    kind = parts[2] if len(parts) == 3 else 'default'
    if kind not in EDGE_TYPES:
        raise argparse.ArgumentTypeError(
            f"Invalid edge type '{kind}', choose from {', '.join(EDGE_TYPES)}"
        )
    return source, target, EDGE_TYPES[kind]


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='layerseg',
        description='Segment a line drawing from scribbles and reconstruct occluded shapes'
    )

    parser.add_argument(
        'input',
        type=str,
        help='Input drawing path'
    )

    parser.add_argument(
        '-s', '--scribbles',
        type=str,
        default=None,
        help='Scribble raster as .npy (int, -1 empty, 0 background, 1-255 segments)'
    )

    parser.add_argument(
        '--frame',
        type=int,
        default=None,
        metavar='RADIUS',
        help='Add a background scribble band of width 2*RADIUS+1 along the border'
    )

    parser.add_argument(
        '-e', '--edge',
        type=parse_edge,
        action='append',
        default=[],
        metavar='FROM:TO[:TYPE]',
        help='Segment TO occludes segment FROM; TYPE is default, merge or split'
    )

    parser.add_argument(
        '-b', '--block',
        type=str,
        default=None,
        help='Block mask as .npy (0 free, 1 forbid merge, 2 force merge)'
    )

    parser.add_argument(
        '-o', '--output',
        type=str,
        default=None,
        help='Output directory (default: <input>_layers)'
    )

    parser.add_argument(
        '--no-shrink',
        action='store_true',
        help='Run a full-image cut for every id instead of shrinking the region'
    )

    parser.add_argument(
        '--iterations',
        type=int,
        default=20,
        help='Maximum relaxation iterations (default: 20)'
    )

    parser.add_argument(
        '--depth-map',
        action='store_true',
        help='Also write a depth preview image'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose logging'
    )

    return parser


def palette_colors(count: int) -> np.ndarray:
    """Evenly spaced saturated hues."""
    hues = np.linspace(0.0, 1.0, max(count, 1), endpoint=False)
    hsv = np.stack([hues, np.full_like(hues, 0.8), np.full_like(hues, 0.9)], axis=-1)
    return hsv2rgb(hsv[None, :, :])[0]


def allocate_segments(color_map: ColorMap, scribbles: np.ndarray) -> None:
    """Allocate ids up to the largest scribbled id of each kind."""
    ids = [i for i in scribble_ids(scribbles) if i > 0]
    hard = max([i for i in ids if not is_soft(i)], default=0)
    soft = max([i - MAX_SEGMENTS_PER_KIND + 1 for i in ids if is_soft(i)], default=0)
    colors = palette_colors(hard + soft)
    for n in range(hard):
        color_map.new_segment(colors[n])
    for n in range(soft):
        color_map.new_segment(colors[hard + n], soft=True)


def load_scribbles(args, shape) -> np.ndarray:
    if args.scribbles:
        scribbles = np.load(args.scribbles).astype(np.int16)
        if scribbles.shape != shape:
            raise LayerSegError(
                f"Scribble shape {scribbles.shape} does not match image shape {shape}"
            )
    else:
        scribbles = np.full(shape, UNASSIGNED, dtype=np.int16)

    if args.frame is not None:
        frame = background_frame(shape[1], shape[0], args.frame)
        empty = scribbles == UNASSIGNED
        scribbles[empty] = frame[empty]
    return scribbles


def main(args=None):
    """Main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s'
    )

    input_path = Path(parsed_args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    if parsed_args.output:
        output_dir = Path(parsed_args.output)
    else:
        output_dir = input_path.with_name(f"{input_path.stem}_layers")

    try:
        intensity = load_intensity(input_path)
        scribbles = load_scribbles(parsed_args, intensity.shape)
        block = None
        if parsed_args.block:
            block = np.load(parsed_args.block).astype(np.uint8)

        color_map = ColorMap.like(intensity)
        allocate_segments(color_map, scribbles)
        graph = OcclusionGraph(color_map.counts)
        changes: Dict[int, int] = consolidate_scribbles(color_map, graph, scribbles)
        if changes:
            print(f"Renumbered segments: {changes}")

        engine = SegmentationEngine(SegmentationConfig(shrink_region=not parsed_args.no_shrink))
        engine.segment(intensity, scribbles, color_map)

        rejected: List[str] = []
        for source, target, edge_type in parsed_args.edge:
            source, target = changes.get(source, source), changes.get(target, target)
            if not graph.add_edge(source, target, edge_type):
                rejected.append(f"{source}:{target}")
        if rejected:
            print(f"Rejected edges: {', '.join(rejected)}", file=sys.stderr)

        fill = ShapeFill(ShapeFillConfig(max_iterations=parsed_args.iterations))
        silhouettes = fill.reconstruct(color_map, graph, intensity, block)

        output_dir.mkdir(parents=True, exist_ok=True)
        save_image(color_map.render(), output_dir / 'segments.png')
        if parsed_args.depth_map:
            save_image(graph.depth_map(color_map), output_dir / 'depth.png')
        for silhouette in silhouettes:
            save_silhouette(silhouette, output_dir)

        print(f"Segments: {len(np.unique(color_map.mask))}")
        print(f"Silhouettes: {len(silhouettes)}")
        print(f"Output: {output_dir}")
        return 0

    except (LayerSegError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
