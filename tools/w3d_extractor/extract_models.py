#!/usr/bin/env python3
"""Extract W3D models to glTF format.

Usage:
    python extract_models.py <input> [-o <output>] [--no-skeleton] [--no-animation] [--lod N]

Examples:
    # Extract a single file
    python extract_models.py tank.w3d -o ./output

    # Extract all W3D files from a directory
    python extract_models.py ./art/w3d/ -o ./output

    # Extract the second LOD without skeleton/animation
    python extract_models.py tank.w3d -o ./output --lod 1 --no-skeleton --no-animation

    # Print the contents of a file instead of exporting it
    python extract_models.py tank.w3d --describe
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from gltf_exporter import GLTFExporter
from w3d_parser import W3DParser, describe


def main():
    parser = argparse.ArgumentParser(
        description="Extract W3D models to glTF format"
    )
    parser.add_argument(
        "input",
        help="Input W3D file or directory containing W3D files",
    )
    parser.add_argument(
        "-o", "--output",
        default="./output",
        help="Output directory for glTF files (default: ./output)",
    )
    parser.add_argument(
        "--no-skeleton",
        action="store_true",
        help="Skip skeleton export",
    )
    parser.add_argument(
        "--no-animation",
        action="store_true",
        help="Skip animation export",
    )
    parser.add_argument(
        "--lod",
        type=int,
        default=0,
        help="LOD level to export (default: 0)",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Print file contents instead of exporting",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Collect input files
    input_path = Path(args.input)
    if input_path.is_file():
        files = [input_path]
    elif input_path.is_dir():
        files = sorted(input_path.glob("**/*.w3d"))
        if not files:
            print(f"No W3D files found in {input_path}", file=sys.stderr)
            return 1
    else:
        print(f"Input not found: {args.input}", file=sys.stderr)
        return 1

    if args.describe:
        failed = False
        for w3d_file in files:
            result = W3DParser().load(w3d_file)
            if not result.ok:
                print(f"Failed: {w3d_file} - {result.error}", file=sys.stderr)
                failed = True
                continue
            print(f"{w3d_file}:")
            print(describe(result.model))
        return 1 if failed else 0

    # Ensure output directory exists
    os.makedirs(args.output, exist_ok=True)

    # Export options
    include_skeleton = not args.no_skeleton
    include_animations = not args.no_animation

    success_count = 0
    fail_count = 0

    for w3d_file in files:
        output_file = Path(args.output) / f"{w3d_file.stem}.glb"

        try:
            exporter = GLTFExporter(str(w3d_file))
            exporter.export(
                str(output_file),
                include_skeleton=include_skeleton,
                include_animations=include_animations,
                lod=args.lod,
            )
            if args.verbose:
                print(f"Exported: {w3d_file} -> {output_file}")
            success_count += 1
        except (ValueError, OSError) as e:
            print(f"Failed: {w3d_file} - {e}", file=sys.stderr)
            fail_count += 1

    # Summary
    total = success_count + fail_count
    print(f"\nExtracted {success_count}/{total} files to {args.output}")

    return 0 if fail_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
