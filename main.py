"""PlaneSplit — CLI entry point.

Builds the BSP tree for a scene description and writes the painter's-order
fragment sequence for one view direction.

Usage
-----
    python main.py --scene data/poly.yaml --view 0 0 1
    python main.py --scene data/poly.yaml --view 0.3 -1 -0.5 --dump
    python main.py --watch 600             # rebuild whenever the scene file changes

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="planesplit",
        description="PlaneSplit — BSP plane splitting and painter's-order sequencing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --view 0 0 1\n"
            "  python main.py --scene data/poly.yaml --view 0.3 -1 -0.5 --dump\n"
            "  python main.py --watch 600 --output output\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/default_config.yaml",
        help="Path to config YAML (default: config/default_config.yaml)",
    )
    parser.add_argument(
        "--scene",
        type=str,
        default=None,
        help="Scene description YAML (default: from config)",
    )
    parser.add_argument(
        "--view",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=[0.0, 0.0, -1.0],
        help="View direction the camera looks along (default: 0 0 -1)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output",
        help="Output directory for plots and data (default: output/)",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        default=False,
        help="Print the tree and the sorted fragment list",
    )
    parser.add_argument(
        "--no-plots",
        action="store_true",
        default=False,
        help="Skip preview figure generation",
    )
    parser.add_argument(
        "--watch",
        type=int,
        default=0,
        metavar="FRAMES",
        help="Poll the scene file for FRAMES frames, rebuilding on change (default: 0)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("planesplit")

    from core_engine.constants import default_config, load_config, log_platform_info
    from data_ingestion.scene_loader import SceneWatcher
    from simulation.io_manager import save_fragments
    from simulation.runner import SplitterSession
    from visualization.plotter import generate_all_plots

    config_path = Path(args.config)
    if config_path.exists():
        config = load_config(config_path)
    else:
        logger.warning("Config %s not found, using built-in defaults", config_path)
        config = default_config()
    log_platform_info()

    scene_path = Path(args.scene or config.scene.path)
    if not scene_path.exists():
        logger.error("Scene description not found: %s", scene_path)
        return 1

    session = SplitterSession(config)
    watcher = SceneWatcher(scene_path)
    if session.update(watcher) is None:
        logger.error("Initial scene load failed: %s", scene_path)
        return 1

    frame = session.render_frame(args.view)

    # Watch mode: the scene may be edited while frames are produced.
    for _ in range(args.watch):
        time.sleep(config.scene.poll_interval_s)
        session.update(watcher)
        frame = session.render_frame(args.view)

    if args.dump:
        print(session.splitter.describe())
        for fragment in frame.fragments:
            print(f"{fragment.index:4d}  anchor={fragment.anchor!r}  {fragment.polygon!r}")

    output_dir = Path(args.output)
    saved = save_fragments(
        output_dir,
        frame.fragments,
        frame.view_direction,
        metadata={
            "scene": scene_path,
            "view_direction": frame.view_direction,
            "stats": session.splitter.stats(),
            "epsilon": config.splitter.epsilon,
        },
    )
    if not args.no_plots:
        saved += generate_all_plots(
            frame.fragments,
            frame.view_direction,
            output_dir=output_dir,
            num_anchors=session.num_records,
            alpha=config.render.alpha,
            draw_edges=config.render.draw_edges,
            dpi=config.render.dpi,
        )

    logger.info("=" * 60)
    logger.info("  %d source polygons → %d fragments", session.num_source_polygons, len(frame.fragments))
    logger.info("  Output files (%d):", len(saved))
    for p in saved:
        logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
