#!/usr/bin/env python3
"""
shapecast 剣振りデモ

壁と床を置いたワールドで剣を往復させ、ヒットボックスが
フレームレートに関係なく壁への接触を検出する様子をログに出力します。

使用方法:
  python3 demo_sword_swing.py                          # 60fps / レイキャスト
  python3 demo_sword_swing.py --fps 15 --cast-type Spherecast --radius 0.2
  python3 demo_sword_swing.py --filter-parts-hit --visualize
"""

import argparse
import math
import sys
from pathlib import Path

from shapecast import get_logger, setup_logging
from shapecast.clock import get_frame_clock
from shapecast.config import load_config
from shapecast.data_types import CastDataError, Pose
from shapecast.debug import get_adornment_cache
from shapecast.geometry import MeshWorld, WorldPart
from shapecast.hitbox import Hitbox
from shapecast.scene import SceneNode, add_emission_point

# 剣のポイント数と間隔
BLADE_POINTS = 5
BLADE_SPACING = 0.25

# 振りの振幅[deg]と周期[s]
SWING_AMPLITUDE = 90.0
SWING_PERIOD = 1.0


def build_world() -> MeshWorld:
    """壁と床のワールドを作成"""
    world = MeshWorld()
    world.add_part(WorldPart.box("Wall", Pose.from_euler((0.0, 0.0, 1.0), (0.0, 0.0, 0.0)), (4.0, 4.0, 0.2)))
    world.add_part(WorldPart.plane("Floor", (0.0, -1.5, 0.0), (0.0, 1.0, 0.0), half_extent=10.0))
    return world


def build_sword() -> SceneNode:
    """剣（根元 + 刃 + エミッションポイント）を作成"""
    sword = SceneNode("Sword")
    blade = SceneNode("Blade", parent=sword)
    for i in range(BLADE_POINTS):
        add_emission_point(blade, f"DmgPoint{i}", (0.0, BLADE_SPACING * (i + 1), 0.0))
    return sword


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="shapecast Sword Swing Demo",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    clock_group = parser.add_argument_group('Clock Options')
    clock_group.add_argument('--fps', type=float, default=60.0,
                             help='Frame rate of the simulated clock')
    clock_group.add_argument('--duration', type=float, default=2.0,
                             help='Demo duration (seconds)')
    clock_group.add_argument('--realtime', action='store_true',
                             help='Pace frames with wall-clock time')

    hitbox_group = parser.add_argument_group('Hitbox Options')
    hitbox_group.add_argument('--resolution', type=float, default=None,
                              help='Casting passes per second (default: from config)')
    hitbox_group.add_argument('--cast-type', default='Raycast',
                              choices=['Raycast', 'Spherecast', 'Blockcast'],
                              help='Shape swept by every emission point')
    hitbox_group.add_argument('--radius', type=float, default=0.1,
                              help='Sphere radius for Spherecast')
    hitbox_group.add_argument('--box-size', type=float, nargs=3, default=(0.1, 0.1, 0.1),
                              help='Box size for Blockcast')
    hitbox_group.add_argument('--filter-parts-hit', action='store_true',
                              help='Report each world part only once per activation')
    hitbox_group.add_argument('--timer', type=float, default=0.0,
                              help='Auto-stop after this many seconds (0 disables)')

    parser.add_argument('--config', type=Path, default=None,
                        help='YAML configuration file')
    parser.add_argument('--visualize', action='store_true',
                        help='Show final adornments with Open3D (requires the viz extra)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def main() -> int:
    """メイン関数"""
    args = create_parser().parse_args()

    config = load_config(args.config)
    # レベル・書式は読み込んだ設定ファイルに従う
    setup_logging(level='DEBUG' if args.verbose else None)
    logger = get_logger(__name__)
    logger.info("Starting shapecast Sword Swing Demo")

    if args.fps <= 0 or args.duration <= 0:
        logger.error("--fps and --duration must be positive")
        return 1

    world = build_world()
    sword = build_sword()
    clock = get_frame_clock()

    try:
        hitbox = Hitbox(sword, provider=world, clock=clock)
        if args.resolution is not None:
            hitbox.set_resolution(args.resolution)
        hitbox.set_cast_data({
            "cast_type": args.cast_type,
            "radius": args.radius,
            "size": list(args.box_size),
        })
    except (CastDataError, ValueError) as e:
        logger.error(f"Invalid hitbox settings: {e}")
        return 1

    hitbox.filter_parts_hit = args.filter_parts_hit
    hitbox.visualizer = args.visualize
    logger.info(f"Hitbox ready: {len(hitbox.get_all_segments())} emission points, "
                f"{args.cast_type}, resolution={hitbox.resolution:.1f}")

    hits = []

    def on_hit(result, segment):
        hits.append(result)
        logger.info(f"[{clock.time:6.3f}s] {segment.name} hit {result.instance.name} "
                    f"at {result.position.round(3).tolist()} (distance {result.distance:.3f})")

    def on_stopped(clear_callbacks):
        logger.info(f"Hitbox stopped (clear_callbacks={clear_callbacks})")

    hitbox.on_hit(on_hit)
    hitbox.on_stopped(on_stopped)

    # 剣を X 軸回りに往復回転させる
    def swing(dt):
        angle = SWING_AMPLITUDE * math.sin(2.0 * math.pi * clock.time / SWING_PERIOD)
        sword.local_pose = Pose.from_euler((0.0, 0.0, 0.0), (angle, 0.0, 0.0))

    swing_connection = clock.connect(swing)
    hitbox.hit_start(timer=args.timer if args.timer > 0 else None)

    try:
        if args.realtime:
            clock.run(args.duration, fps=args.fps)
        else:
            frames = int(round(args.duration * args.fps))
            for _ in range(frames):
                clock.step(1.0 / args.fps)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        swing_connection.disconnect()

    if hitbox.active:
        hitbox.hit_stop()

    stats = hitbox.get_stats()
    print("\n=== Sword Swing Summary ===")
    print(f"Frames:          {clock.frame_count}")
    print(f"Casting passes:  {stats['casting_passes']}")
    print(f"Hits:            {len(hits)}")
    print(f"World casts:     {world.get_stats()['casts']}")
    for key, segment in hitbox.get_all_segments().items():
        print(f"  {segment.name}: travelled {segment.distance:.3f}")

    if args.visualize:
        try:
            import open3d as o3d
        except ImportError:
            logger.error("Open3D is not installed; install the 'viz' extra to visualize")
            return 1
        geometries = get_adornment_cache().to_open3d()
        o3d.visualization.draw_geometries(geometries, window_name="shapecast adornments")

    hitbox.destroy()
    return 0


if __name__ == "__main__":
    sys.exit(main())
