"""
Manifest runner — top-level orchestration: binaries → platform manifest.

Ties core inspection, the upgrade policy and IO together into
``generate_platform_manifest`` (called from the API router or the CLI).

Every binary is inspected before anything is written; an error on any
file aborts the run and leaves the destination untouched.
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Sequence, Tuple

from platform_manifest.core.assembly_info import AssemblyInfo, inspect_assembly
from platform_manifest.io.reader import load_manifest
from platform_manifest.io.schema import (
    AssemblyInfoOutput,
    AssemblyItem,
    DependencyItem,
    ManifestRunResult,
    ValidationReport,
)
from platform_manifest.io.writer import build_entries, render_manifest, write_manifest
from platform_manifest.policy.upgrade import UpgradePolicy
from platform_manifest.policy.verdict import validate_manifest

logger = logging.getLogger(__name__)


def inspect_items(items: Sequence[AssemblyItem]) -> List[Tuple[AssemblyInfo, str]]:
    """Inspect every item, pairing each AssemblyInfo with its package id."""
    return [(inspect_assembly(item.path), item.package_id) for item in items]


def generate_platform_manifest(
    assemblies: Sequence[AssemblyItem],
    dependencies: Sequence[DependencyItem],
    output_path: Path,
) -> ManifestRunResult:
    """
    Inspect *assemblies* and write the platform manifest to *output_path*.

    Parameters
    ----------
    assemblies : sequence of AssemblyItem
        Candidate binaries with their owning package ids.
    dependencies : sequence of DependencyItem
        Package prevent-upgrade flags.  Packages missing here are pinned.
    output_path : Path
        Destination file; its directory is created if needed.

    Returns
    -------
    ManifestRunResult
    """
    policy = UpgradePolicy.from_dependencies(dependencies)
    inspected = inspect_items(assemblies)

    entries = build_entries(inspected, policy)
    write_manifest(render_manifest(entries), Path(output_path))

    skipped = sorted(info.path for info, _ in inspected if not info.is_managed_assembly)
    pinned = sum(1 for e in entries if policy.is_pinned(e.package_id))
    logger.info(
        "Wrote %d entries (%d pinned, %d skipped) to %s",
        len(entries), pinned, len(skipped), output_path,
    )
    return ManifestRunResult(
        output_path=str(output_path),
        entries_written=len(entries),
        pinned=pinned,
        skipped_unmanaged=skipped,
    )


def validate_platform_manifest(
    manifest_path: Path,
    binary_paths: Sequence[str],
    upgradeable_packages: Sequence[str],
) -> ValidationReport:
    """Check the manifest at *manifest_path* against the given binaries."""
    entries = load_manifest(Path(manifest_path))
    infos = [inspect_assembly(p) for p in binary_paths]
    return validate_manifest(entries, infos, upgradeable_packages)


# ── CLI ──────────────────────────────────────────────────────────────────────

def _split_pair(text: str, option: str) -> Tuple[str, str]:
    key, sep, value = text.rpartition("=")
    if not sep or not key or not value:
        raise argparse.ArgumentTypeError(f"{option} expects KEY=VALUE, got '{text}'")
    return key, value


def _assembly_arg(text: str) -> AssemblyItem:
    path, package_id = _split_pair(text, "--assembly")
    return AssemblyItem(path=path, package_id=package_id)


def _dependency_arg(text: str) -> DependencyItem:
    package_id, flag = _split_pair(text, "--dependency")
    try:
        return DependencyItem(package_id=package_id, prevent_upgrade=flag)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="platform_manifest — shared framework platform manifest generator",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Write a platform manifest")
    gen.add_argument(
        "--assembly",
        dest="assemblies",
        type=_assembly_arg,
        action="append",
        default=[],
        help="PATH=PACKAGE_ID (repeatable)",
    )
    gen.add_argument(
        "--dependency",
        dest="dependencies",
        type=_dependency_arg,
        action="append",
        default=[],
        help="PACKAGE_ID=true|false prevent-upgrade flag (repeatable)",
    )
    gen.add_argument(
        "-o", "--output",
        type=Path,
        required=True,
        help="Manifest file to write",
    )

    ins = sub.add_parser("inspect", help="Print assembly metadata as JSON")
    ins.add_argument("binaries", nargs="+", help="Paths to binaries")

    val = sub.add_parser("validate", help="Check a manifest against binaries")
    val.add_argument("manifest", type=Path, help="Platform manifest file")
    val.add_argument("binaries", nargs="+", help="Paths to binaries")
    val.add_argument(
        "--upgradeable",
        action="append",
        default=[],
        help="Package id allowed to carry its real versions (repeatable)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point for platform_manifest."""
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "generate":
        result = generate_platform_manifest(args.assemblies, args.dependencies, args.output)
        print(f"Entries: {result.entries_written} (pinned={result.pinned}, "
              f"skipped={len(result.skipped_unmanaged)})")
        print(f"Manifest written to: {result.output_path}")
        return 0

    if args.command == "inspect":
        outputs = [
            AssemblyInfoOutput.from_info(inspect_assembly(p)).model_dump(mode="json")
            for p in args.binaries
        ]
        print(json.dumps(outputs, indent=2, sort_keys=True))
        return 0

    report = validate_platform_manifest(args.manifest, args.binaries, args.upgradeable)
    print(json.dumps(report.model_dump(mode="json"), indent=2, sort_keys=True))
    return 0 if report.verdict == "ACCEPT" else 1


if __name__ == "__main__":
    sys.exit(main())
