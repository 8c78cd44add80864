"""Command-line interface for imgsync.

Parses arguments, loads configuration, builds a client and dispatches
to the requested operation.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys

import imgsync
from imgsync import log
from imgsync import runtime as runtime_mod
from imgsync.auth import AuthFile
from imgsync.client import Client
from imgsync.config import ClientConfig
from imgsync.config import load as load_config

# ── Helpers ───────────────────────────────────────────────────────────

def _make_parser() -> argparse.ArgumentParser:
    """Build the top-level argument parser with all subcommands."""

    parser = argparse.ArgumentParser(
        prog="imgsync",
        description="Pull, push and copy container images between registries",
        epilog="Run 'imgsync <command> --help' for subcommand-specific options.",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"imgsync {imgsync.VERSION}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="enable debug logging",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        default=None,
        help="configuration file (default: ./.imgsync.yaml)",
    )
    parser.add_argument(
        "--retries",
        metavar="N",
        type=int,
        default=None,
        help="retry failed pulls N times",
    )
    parser.add_argument(
        "--retry-delay",
        metavar="SECONDS",
        type=float,
        default=None,
        help="initial delay between pull retries (doubles each failure)",
    )
    parser.add_argument(
        "--auth-file",
        metavar="FILE",
        default=None,
        help="registry auth file (default: ~/.docker/config.json)",
    )

    sub = parser.add_subparsers(dest="command", title="commands")

    pull_parser = sub.add_parser("pull", help="pull an image")
    pull_parser.add_argument("ref", help="image reference")

    push_parser = sub.add_parser("push", help="push a local image")
    push_parser.add_argument("ref", help="image reference")

    tag_parser = sub.add_parser("tag", help="tag a local image")
    tag_parser.add_argument("src", help="source image reference")
    tag_parser.add_argument("dst", help="new image reference")

    repush_parser = sub.add_parser(
        "repush",
        help="copy an image: pull SRC, tag it as DST, push DST",
    )
    repush_parser.add_argument("src", help="source image reference")
    repush_parser.add_argument("dst", help="destination image reference")

    run_parser = sub.add_parser(
        "run",
        help="pull an image and start a container from it",
    )
    run_parser.add_argument("ref", help="image reference")
    run_parser.add_argument("--name", default=None, help="container name")
    run_parser.add_argument(
        "-p", "--publish",
        metavar="SPEC",
        action="append",
        default=[],
        dest="ports",
        help="port spec [ip:][hostPort:]containerPort[/proto] (repeatable)",
    )

    rm_parser = sub.add_parser("rm", help="kill and remove a container")
    rm_parser.add_argument("container_id", help="container ID or name")

    images_parser = sub.add_parser("images", help="list local images of a repository")
    images_parser.add_argument("repo", help="repository name")
    images_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="print raw JSON",
    )

    return parser


def _apply_overrides(cfg: ClientConfig, args: argparse.Namespace) -> ClientConfig:
    """Apply CLI overrides (--retries, --retry-delay, --auth-file)."""
    changes = {
        "retries": args.retries,
        "retry_delay": args.retry_delay,
        "auth_file": args.auth_file,
    }
    return dataclasses.replace(
        cfg, **{k: v for k, v in changes.items() if v is not None}
    )


def _make_client(cfg: ClientConfig) -> Client:
    return Client(
        runtime_mod.for_config(cfg),
        AuthFile(cfg.auth_file),
        cfg,
    )


def _print_images(images: list[dict], as_json: bool) -> None:
    if as_json:
        sys.stdout.write(json.dumps(images, indent=2) + "\n")
        return
    for image in images:
        image_id = str(image.get("Id", ""))[:12]
        names = image.get("Names") or image.get("RepoTags") or ["<none>"]
        sys.stdout.write(f"{image_id}  {', '.join(names)}\n")


def _dispatch(client: Client, args: argparse.Namespace) -> int:
    if args.command == "pull":
        client.pull(args.ref)
    elif args.command == "push":
        client.push(args.ref)
    elif args.command == "tag":
        client.tag(args.src, args.dst)
    elif args.command == "repush":
        client.repush(args.src, args.dst)
    elif args.command == "run":
        sys.stdout.write(client.run(args.ref, args.name, args.ports) + "\n")
    elif args.command == "rm":
        client.force_remove(args.container_id)
    elif args.command == "images":
        _print_images(client.list_images_for_repo(args.repo), args.json)
    else:
        log.error(f"unknown command: {args.command}")
        return 2
    return 0


# ── Entry point ───────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    """Parse arguments, load config, dispatch to the operation.

    Parameters
    ----------
    argv:
        Argument list for testing.  Defaults to ``sys.argv[1:]``.
    """
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        log.set_verbose(True)

    if args.command is None:
        parser.print_help(sys.stderr)
        sys.exit(2)

    try:
        cfg = _apply_overrides(load_config(args.config), args)
        client = _make_client(cfg)
    except Exception as exc:
        log.error(f"failed to load configuration: {exc}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    try:
        rc = _dispatch(client, args)
    except KeyboardInterrupt:
        log.warn("interrupted")
        sys.exit(130)
    except Exception as exc:
        log.error(f"{args.command} failed: {exc}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    sys.exit(rc)
