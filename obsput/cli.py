"""Command line entry point.

Usage:
  obsput obs add --name prod --endpoint obs.example.com --bucket releases --ak AK --sk SK
  obsput put build/app.tar.gz --prefix app
  obsput list -o json
  obsput delete v1.0.0-abc123-20260214-153045-1
  obsput delete --before 7d --dry-run
  obsput download v1.0.0-abc123-20260214-153045-1
  obsput obs create-bucket
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from datetime import datetime, time
from pathlib import Path
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from obsput import __version__
from obsput.common.config import Settings, get_settings
from obsput.common.logging import setup_logging
from obsput.domain.errors import FormatError, NotFoundError
from obsput.domain.keys import (
    clean_url,
    extract_filename,
    format_size,
    parse_before,
    parse_version_date,
)
from obsput.domain.profiles import Profile, ProfileStore
from obsput.domain.versioning import VersionGenerator
from obsput.services.fanout import ProfileFanout
from obsput.services.storage_service import StorageClient, UploadResult

ADD_HINT = (
    'obsput obs add --name prod --endpoint "obs.xxx.com" '
    '--bucket "bucket" --ak "xxx" --sk "xxx"'
)


class CommandError(Exception):
    """Raised for user-facing command failures (exit status 2)."""


def _open_store(settings: Settings) -> ProfileStore:
    try:
        return ProfileStore.load(settings.config_path)
    except ValueError as exc:
        raise CommandError(str(exc)) from exc


def _load_profiles(settings: Settings, name: str | None) -> list[Profile]:
    store = _open_store(settings)
    if len(store) == 0:
        raise CommandError(
            "No OBS configurations configured\n\n"
            f"Config file: {settings.config_path}\n\nAdd OBS:\n  {ADD_HINT}"
        )
    try:
        return store.select(name)
    except NotFoundError as exc:
        raise CommandError(f"{exc}\n\nRun: obsput obs list") from exc


def _client_factory(settings: Settings) -> Callable[[Profile], StorageClient]:
    return lambda profile: StorageClient(profile, settings=settings)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _progress_printer(total: int) -> Callable[[int], None]:
    def report(transferred: int) -> None:
        percent = (transferred * 100 // total) if total else 100
        sys.stderr.write(f"\r  {format_size(transferred)} / {format_size(total)} ({percent}%)")
        sys.stderr.flush()

    return report


def _upload_payload(result: UploadResult) -> dict[str, Any]:
    return {
        "profile": result.profile,
        "success": result.success,
        "version": result.version,
        "key": result.key,
        "url": result.url,
        "signed_url": result.signed_url,
        "clean_url": clean_url(result.signed_url) if result.signed_url else "",
        "md5": result.md5,
        "size": result.size,
        "policy_relaxed": result.policy_relaxed,
        "acl_set": result.acl_set,
        "url_signed": result.url_signed,
        "error": result.error_message,
    }


def cmd_put(args: argparse.Namespace, settings: Settings) -> int:
    profiles = _load_profiles(settings, args.profile)
    version = VersionGenerator().generate()
    show_progress = args.output == "text" and sys.stderr.isatty()

    results: list[UploadResult] = []
    for profile in profiles:
        client = StorageClient(profile, settings=settings)
        progress = None
        if show_progress:
            try:
                progress = _progress_printer(args.file.stat().st_size)
            except OSError:
                progress = None
        result = client.upload(args.file, version, prefix=args.prefix, progress=progress)
        if progress is not None:
            sys.stderr.write("\n")
        results.append(result)

        if args.output == "json":
            continue
        print(f"[{profile.name}]")
        if not result.success:
            print(f"  Failed: {result.error_message}")
            continue
        link = clean_url(result.signed_url)
        filename = extract_filename(result.key)
        print(f"  Version:   {result.version}")
        print(f"  URL:       {result.url}")
        print(f"  Clean URL: {link}")
        print(f"  Size:      {format_size(result.size)}")
        print(f"  MD5:       {result.md5}")
        if not result.policy_relaxed:
            print("  Warning: bucket policy for anonymous read was not applied")
        if not result.acl_set:
            print("  Warning: object ACL was not applied")
        if not result.url_signed:
            print("  Warning: signed URL unavailable, showing public URL")
        print("  Download:")
        print(f"    curl -k -o {filename} {link}")
        print(f"    wget --no-check-certificate -O {filename} {link}")

    success = sum(1 for result in results if result.success)
    failed = len(results) - success
    if args.output == "json":
        _print_json({"version": version, "results": [_upload_payload(r) for r in results]})
    else:
        print(f"{success} completed, {failed} failed")
    return 1 if failed else 0


def cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    profiles = _load_profiles(settings, args.profile)
    payload: dict[str, Any] = {}
    failed = 0
    total = 0
    for profile in profiles:
        listing = StorageClient(profile, settings=settings).list_versions(args.prefix)
        if not listing.success:
            failed += 1
            payload[profile.name] = {"error": listing.error_message}
            if args.output == "text":
                print(f"[{profile.name}]\n  Failed to list versions: {listing.error_message}")
            continue
        total += len(listing.versions)
        payload[profile.name] = [asdict(info) for info in listing.versions]
        if args.output == "json":
            continue
        print(f"[{profile.name}]")
        if not listing.versions:
            print("  No versions found")
            continue
        for info in listing.versions:
            print(f"  {info.version}  {info.size:>10}  {info.date}  {info.commit}")
    if args.output == "json":
        _print_json(payload)
    elif total:
        print(f"Total: {total} versions")
    return 1 if failed else 0


def _versions_to_delete(
    versions: Sequence[str], *, target: str | None, cutoff: datetime | None
) -> list[str]:
    selected: list[str] = []
    for version in versions:
        if version in selected:
            continue
        if cutoff is not None:
            try:
                version_date = parse_version_date(version)
            except FormatError:
                continue
            if datetime.combine(version_date, time.min) < cutoff:
                selected.append(version)
        elif target and version.startswith(target):
            selected.append(version)
    return selected


def cmd_delete(args: argparse.Namespace, settings: Settings) -> int:
    if not args.version and not args.before:
        raise CommandError("specify a version or use --before to delete versions by date")
    cutoff = None
    if args.before:
        try:
            cutoff = parse_before(args.before)
        except FormatError as exc:
            raise CommandError(str(exc)) from exc

    profiles = _load_profiles(settings, args.profile)
    deleted = 0
    failed = 0
    for profile in profiles:
        print(f"[{profile.name}]")
        client = StorageClient(profile, settings=settings)
        listing = client.list_versions()
        if not listing.success:
            print(f"  Failed to list versions: {listing.error_message}")
            failed += 1
            continue
        targets = _versions_to_delete(
            [info.version for info in listing.versions],
            target=args.version,
            cutoff=cutoff,
        )
        if not targets:
            print("  No versions to delete")
            continue
        print(f"  Found {len(targets)} version(s) to delete:")
        for version in targets:
            print(f"    - {version}")
        if args.dry_run:
            print("  DRY RUN - skipping deletion")
            continue
        for version in targets:
            result = client.delete_version(version)
            if result.success:
                deleted += 1
                print(f"  Deleted: {version} ({len(result.deleted)} object(s))")
            else:
                failed += 1
                print(f"  Failed: {version} ({result.error_message})")
    print(f"Deleted: {deleted}, Failed: {failed}")
    return 1 if failed else 0


def cmd_download(args: argparse.Namespace, settings: Settings) -> int:
    profiles = _load_profiles(settings, args.profile)
    found = False
    for profile in profiles:
        listing = StorageClient(profile, settings=settings).list_versions()
        if not listing.success:
            print(f"[{profile.name}]\n  Failed to list versions: {listing.error_message}")
            continue
        for info in listing.versions:
            if info.version != args.version:
                continue
            found = True
            link = clean_url(info.url)
            filename = extract_filename(info.key)
            print(f"[{profile.name}]")
            print(f"  URL:  {link}")
            print(f"  Size: {info.size}")
            print(f"    curl -k -o {filename} {link}")
            print(f"    wget --no-check-certificate -O {filename} {link}")
    if not found:
        print(f"Version {args.version} not found")
        return 1
    return 0


def cmd_obs_add(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    if store.exists(args.name) and not args.force:
        raise CommandError(f"profile '{args.name}' already exists (use --force to replace)")
    try:
        profile = Profile(
            name=args.name,
            endpoint=args.endpoint,
            bucket=args.bucket,
            ak=args.ak,
            sk=args.sk,
        )
    except ValidationError as exc:
        raise CommandError(f"invalid profile: {exc}") from exc
    store.add(profile)
    store.save()
    print(f"Added profile '{profile.name}' to {store.path}")
    return 0


def cmd_obs_list(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    if len(store) == 0:
        print(f"No OBS configurations configured\n\nAdd OBS:\n  {ADD_HINT}")
        return 0
    for profile in store.profiles():
        masked = profile.masked()
        print(f"{masked['name']}: {masked['endpoint']} bucket={masked['bucket']}")
    return 0


def cmd_obs_remove(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    if not store.remove(args.name):
        raise CommandError(f"profile '{args.name}' not found")
    store.save()
    print(f"Removed profile '{args.name}'")
    return 0


def cmd_obs_create_bucket(args: argparse.Namespace, settings: Settings) -> int:
    profiles = _load_profiles(settings, args.profile)
    fanout = ProfileFanout(
        _client_factory(settings), max_workers=settings.FANOUT_MAX_WORKERS
    )
    report = fanout.create_buckets(profiles)
    for result in sorted(report.results, key=lambda r: r.profile):
        if result.success:
            print(f"[{result.profile}] created bucket {result.bucket}")
        else:
            print(f"[{result.profile}] failed: {result.error_message}")
    print(f"{report.success_count} completed, {report.fail_count} failed")
    return 1 if report.fail_count else 0


def cmd_version(args: argparse.Namespace, settings: Settings) -> int:
    print(f"obsput {__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="obsput", description="Upload versioned build artifacts to OBS/S3 storage."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_profile_flag(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "-p",
            "--profile",
            default=None,
            help="Profile name to use (default: all profiles)",
        )

    put = subparsers.add_parser("put", help="Upload a file to every selected profile")
    put.add_argument("file", type=_existing_file, help="File to upload")
    put.add_argument("--prefix", default="", help="Key prefix for the upload")
    put.add_argument("-o", "--output", choices=("text", "json"), default="text")
    add_profile_flag(put)
    put.set_defaults(handler=cmd_put)

    list_cmd = subparsers.add_parser("list", help="List uploaded versions")
    list_cmd.add_argument("--prefix", default="", help="Only list keys under this prefix")
    list_cmd.add_argument("-o", "--output", choices=("text", "json"), default="text")
    add_profile_flag(list_cmd)
    list_cmd.set_defaults(handler=cmd_list)

    delete = subparsers.add_parser(
        "delete", help="Delete a version or all versions before a date"
    )
    delete.add_argument(
        "version",
        nargs="?",
        default=None,
        help="Version (prefix match, so v...-1 also matches v...-10)",
    )
    delete.add_argument(
        "--before",
        default=None,
        help="Delete versions before this date (YYYY-MM-DD, Nd or Nh)",
    )
    delete.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without deleting",
    )
    add_profile_flag(delete)
    delete.set_defaults(handler=cmd_delete)

    download = subparsers.add_parser("download", help="Show download commands for a version")
    download.add_argument("version")
    add_profile_flag(download)
    download.set_defaults(handler=cmd_download)

    obs = subparsers.add_parser("obs", help="Manage storage profiles")
    obs_sub = obs.add_subparsers(dest="obs_command", required=True)

    add = obs_sub.add_parser("add", help="Add or replace a profile")
    add.add_argument("--name", required=True)
    add.add_argument("--endpoint", required=True)
    add.add_argument("--bucket", required=True)
    add.add_argument("--ak", required=True)
    add.add_argument("--sk", required=True)
    add.add_argument("--force", action="store_true", help="Replace an existing profile")
    add.set_defaults(handler=cmd_obs_add)

    obs_list = obs_sub.add_parser("list", help="List profiles")
    obs_list.set_defaults(handler=cmd_obs_list)

    remove = obs_sub.add_parser("remove", help="Remove a profile")
    remove.add_argument("name")
    remove.set_defaults(handler=cmd_obs_remove)

    create = obs_sub.add_parser(
        "create-bucket", help="Create the bucket of every selected profile in parallel"
    )
    add_profile_flag(create)
    create.set_defaults(handler=cmd_obs_create_bucket)

    version = subparsers.add_parser("version", help="Show the obsput version")
    version.set_defaults(handler=cmd_version)

    return parser


def _existing_file(value: str) -> Path:
    path = Path(value)
    if not path.is_file():
        raise argparse.ArgumentTypeError(f"file not found: {value}")
    return path


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = get_settings()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    try:
        return args.handler(args, settings)
    except CommandError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
