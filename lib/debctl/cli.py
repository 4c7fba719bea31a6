# Copyright 2024 Canonical Ltd.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Command-line interface for managing APT repository sources.

```
debctl new docker --uri https://download.docker.com/linux/ubuntu --component stable \\
    --arch amd64 --key https://download.docker.com/linux/ubuntu/gpg
debctl add "deb [arch=amd64] https://download.docker.com/linux/ubuntu jammy stable" \\
    --name docker --key https://download.docker.com/linux/ubuntu/gpg
debctl convert docker --backup
```
"""

from __future__ import annotations

import argparse
import logging
import sys

from debctl.entry import SourceType
from debctl.errors import Error, GPGKeyError
from debctl.key import (
    APT_KEYRINGS_DIR,
    InlineDestination,
    KeyringDestination,
    default_keyring_path,
    key_source_from_location,
)
from debctl.source import (
    APT_SOURCES_DIR,
    BACKUP_EXTENSION,
    OverwriteAction,
    RepositorySource,
    SourceConverter,
    plan_install,
)

logger = logging.getLogger("debctl")


def _add_key_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("signing key")
    group.add_argument(
        "--key",
        metavar="LOCATION",
        help="path or URL of the signing key, or its fingerprint when --keyserver is given",
    )
    group.add_argument("--keyserver", help="keyserver to fetch the --key fingerprint from")
    group.add_argument(
        "--force-no-key", action="store_true", help="allow adding a source without a signing key"
    )
    placement = group.add_mutually_exclusive_group()
    placement.add_argument(
        "--inline-key", action="store_true", help="embed the key in the source file"
    )
    placement.add_argument("--key-path", help="where to install the keyring file")


def _add_overwrite_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--overwrite",
        dest="action",
        action="store_const",
        const=OverwriteAction.Overwrite,
        help="replace the source file if it already exists",
    )
    group.add_argument(
        "--append",
        dest="action",
        action="store_const",
        const=OverwriteAction.Append,
        help="add to the source file if it already exists",
    )
    parser.set_defaults(action=OverwriteAction.Fail)


def _source_type(value: str) -> SourceType:
    try:
        return SourceType(value)
    except ValueError:
        raise argparse.ArgumentTypeError("must be deb or deb-src") from None


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the `debctl` command."""
    parser = argparse.ArgumentParser(
        prog="debctl", description="Manage APT repository sources in the deb822 format."
    )
    parser.add_argument("-d", "--debug", action="store_true", help="show debug logging")
    parser.add_argument(
        "--dry-run", action="store_true", help="print what would be written without writing it"
    )
    parser.add_argument("--sources-dir", default=APT_SOURCES_DIR, help=argparse.SUPPRESS)
    parser.add_argument("--keyring-dir", default=APT_KEYRINGS_DIR, help=argparse.SUPPRESS)
    subparsers = parser.add_subparsers(dest="command", required=True)

    new = subparsers.add_parser("new", help="add a new source from explicit fields")
    new.add_argument("name", help="the name of the source file, without extension")
    new.add_argument("--uri", action="append", required=True, dest="uris")
    new.add_argument(
        "--suite",
        action="append",
        dest="suites",
        help="defaults to the codename of the running distribution",
    )
    new.add_argument("--component", action="append", dest="components", default=[])
    new.add_argument("--type", action="append", dest="types", type=_source_type)
    new.add_argument("--arch", action="append", default=[])
    new.add_argument("--lang", action="append", default=[])
    new.add_argument(
        "--option", action="append", dest="options", default=[], metavar="KEY=VALUE[,VALUE]"
    )
    new.add_argument(
        "--force-literal-options",
        action="store_true",
        help="allow option names that aren't documented in sources.list(5)",
    )
    new.add_argument("--description")
    new.add_argument("--disabled", action="store_true")
    _add_key_args(new)
    _add_overwrite_args(new)
    new.set_defaults(handler=_new)

    add = subparsers.add_parser("add", help="add a new source from a one-line-style entry")
    add.add_argument("line", help="the one-line-style entry, quoted")
    add.add_argument("--name", required=True)
    add.add_argument("--description")
    add.add_argument("--disabled", action="store_true")
    _add_key_args(add)
    _add_overwrite_args(add)
    add.set_defaults(handler=_add)

    convert = subparsers.add_parser(
        "convert", help="convert a one-line-style .list file to a deb822 .sources file"
    )
    convert.add_argument(
        "name", nargs="?", help="convert <sources-dir>/NAME.list to NAME.sources"
    )
    convert.add_argument("--in", dest="in_path", metavar="PATH", help="`-` for stdin")
    convert.add_argument("--out", dest="out_path", metavar="PATH", help="`-` for stdout")
    backup = convert.add_mutually_exclusive_group()
    backup.add_argument("--backup", action="store_true", help="keep a copy as NAME.list.bak")
    backup.add_argument("--backup-to", metavar="PATH")
    convert.add_argument("--skip-comments", action="store_true")
    convert.add_argument("--skip-disabled", action="store_true")
    convert.set_defaults(handler=_convert)

    return parser


def _key_kwargs(args: argparse.Namespace, name: str) -> dict:
    if args.key is None:
        if args.keyserver:
            raise GPGKeyError("--keyserver needs a key fingerprint passed with --key")
        return {}
    if args.inline_key:
        destination = InlineDestination()
    else:
        destination = KeyringDestination(
            args.key_path or default_keyring_path(name, args.keyring_dir)
        )
    return {
        "key": key_source_from_location(args.key, args.keyserver),
        "key_destination": destination,
    }


def _install(args: argparse.Namespace, source: RepositorySource) -> None:
    if not (source.has_key or args.force_no_key):
        raise GPGKeyError(
            "No signing key was provided. Pass --key, or --force-no-key to add the source anyway."
        )
    if args.dry_run:
        plan = plan_install(source.path, args.action)
        source.install_key(dry_run=True)
        logger.info("would %s %s", plan.value, source.path)
        sys.stdout.write(source.render())
        return
    source.install_key()
    source.install(args.action)


def _new(args: argparse.Namespace) -> None:
    source = RepositorySource.from_fields(
        args.name,
        uris=args.uris,
        suites=args.suites,
        components=args.components,
        types=args.types,
        arch=args.arch,
        lang=args.lang,
        options=args.options,
        force_literal_options=args.force_literal_options,
        description=args.description,
        enabled=not args.disabled,
        sources_dir=args.sources_dir,
        **_key_kwargs(args, args.name),
    )
    _install(args, source)


def _add(args: argparse.Namespace) -> None:
    source = RepositorySource.from_line(
        args.line,
        args.name,
        description=args.description,
        enabled=not args.disabled,
        sources_dir=args.sources_dir,
        **_key_kwargs(args, args.name),
    )
    _install(args, source)


def _convert(args: argparse.Namespace, parser: argparse.ArgumentParser) -> None:
    options = {"skip_comments": args.skip_comments, "skip_disabled": args.skip_disabled}
    if args.name:
        if args.in_path or args.out_path:
            parser.error("convert takes either a NAME or --in and --out, not both")
        converter = SourceConverter.from_name(
            args.name,
            sources_dir=args.sources_dir,
            backup=args.backup,
            backup_to=args.backup_to,
            **options,
        )
    elif args.in_path and args.out_path:
        backup_path = args.backup_to
        if args.backup:
            backup_path = f"{args.in_path}.{BACKUP_EXTENSION}"
        converter = SourceConverter(
            args.in_path, args.out_path, backup_path=backup_path, **options
        )
    else:
        parser.error("convert needs a NAME, or both --in and --out")

    if args.dry_run:
        sys.stdout.write(converter.render())
        return
    converter.convert()


def _setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        logger.addHandler(console_handler)
    # handlers from an earlier call in this process take the new level too
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def main(argv: list[str] | None = None) -> int:
    """Run the `debctl` command and return its exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.debug)
    try:
        if args.handler is _convert:
            _convert(args, parser)
        else:
            args.handler(args)
    except Error as e:
        logger.error("%s", e.message)
        logger.debug("%r", e)
        return 1
    return 0


if __name__ == "__main__":  # pragma: nocover
    sys.exit(main())
