"""
Console front end.

Runs one job at a time and blocks until it finishes. Flags override the
environment (DO_TOKEN, ANTHROPIC_API_KEY, ...) read by DeploySettings.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from . import __version__
from .backups import format_size, latest_backup, list_backup_files
from .config import DeploySettings
from .control_plane.models import DeployRecord
from .control_plane.sequencer import DeployParams, DeploySequencer
from .errors import BackupError, DeployError, ExitCode, MissingParameterError, UnclassifiedError
from .logging import setup_logging
from .progress import ProgressSink
from .providers import DigitalOceanClient
from .record_store import DeployRecordStore
from .ssh import RemoteGateway

logger = structlog.get_logger(__name__)


def _add_secret_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--do-token", help="DigitalOcean API token (env: DO_TOKEN)")
    parser.add_argument("--anthropic-key", help="Anthropic API key (env: ANTHROPIC_API_KEY)")
    parser.add_argument("--openai-key", help="OpenAI API key (env: OPENAI_API_KEY)")
    parser.add_argument("--gemini-key", help="Google Gemini API key (env: GEMINI_API_KEY)")
    parser.add_argument(
        "--whatsapp-phone-number", help="WhatsApp phone number (env: WHATSAPP_PHONE_NUMBER)"
    )
    parser.add_argument("--telegram-bot-token", help="Telegram bot token (env: TELEGRAM_BOT_TOKEN)")


def _add_droplet_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--region", help="Region slug (default: sgp1)")
    parser.add_argument("--size", help="Droplet size slug (default: s-2vcpu-4gb)")
    parser.add_argument("--hostname", help="Droplet hostname (default: openclaw-<id8>)")
    parser.add_argument("--tailscale", action="store_true", default=None, help="Install Tailscale")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawdeploy",
        description="Deploy OpenClaw to DigitalOcean",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Create a droplet and install OpenClaw on it")
    _add_secret_args(deploy)
    _add_droplet_args(deploy)
    deploy.add_argument(
        "--backup",
        help="Backup archive to restore, or 'latest' for the newest local archive",
    )
    deploy.add_argument(
        "--enable-backups", action="store_true", default=None,
        help="Enable DigitalOcean automated backups",
    )

    migrate = sub.add_parser("migrate", help="Copy OpenClaw state from an existing droplet to a new one")
    _add_secret_args(migrate)
    _add_droplet_args(migrate)
    migrate.add_argument("--source-ip", required=True, help="IP address of the source droplet")
    migrate.add_argument("--source-key", required=True, type=Path, help="SSH private key for the source droplet")

    status = sub.add_parser("status", help="List openclaw-tagged droplets")
    status.add_argument("--do-token", help="DigitalOcean API token (env: DO_TOKEN)")

    destroy = sub.add_parser("destroy", help="Delete a droplet by name with its SSH keys")
    destroy.add_argument("--do-token", help="DigitalOcean API token (env: DO_TOKEN)")
    destroy.add_argument("--name", required=True, help="Droplet name")
    destroy.add_argument("--yes", action="store_true", help="Confirm permanent deletion")

    sub.add_parser("list-backups", help="Show local backup archives")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Port (default: 3456)")
    return parser


def _params_from_args(settings: DeploySettings, args: argparse.Namespace, backup: Optional[Path]) -> DeployParams:
    return DeployParams.from_settings(
        settings,
        do_token=args.do_token,
        anthropic_key=args.anthropic_key,
        openai_key=args.openai_key,
        gemini_key=args.gemini_key,
        whatsapp_phone_number=args.whatsapp_phone_number,
        telegram_bot_token=args.telegram_bot_token,
        region=args.region,
        size=args.size,
        hostname=args.hostname,
        backup=backup,
        enable_backups=getattr(args, "enable_backups", None),
        tailscale=args.tailscale,
    )


def _require_token(settings: DeploySettings, args: argparse.Namespace) -> str:
    token = args.do_token or settings.do_token.get_secret_value()
    if not token:
        raise MissingParameterError("do_token")
    return token


async def run_deploy(settings: DeploySettings, params: DeployParams) -> DeployRecord:
    gateway = RemoteGateway(
        max_workers=settings.ssh_workers, command_timeout=settings.ssh_command_timeout
    )
    try:
        sequencer = DeploySequencer(settings, gateway, DeployRecordStore(settings.deploys_dir))
        return await sequencer.run(params, ProgressSink())
    finally:
        gateway.shutdown()


async def _deploy(settings: DeploySettings, args: argparse.Namespace) -> None:
    backup = None
    if args.backup == "latest":
        backup = latest_backup(settings.backups_dir)
    elif args.backup and args.backup != "none":
        backup = Path(args.backup).expanduser()
    await run_deploy(settings, _params_from_args(settings, args, backup))


async def _migrate(settings: DeploySettings, args: argparse.Namespace) -> None:
    settings.ensure_dirs()
    source_ip = args.source_ip
    source_key = args.source_key.expanduser()
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    remote_archive = f"/tmp/openclaw_migrate_{timestamp}.tar.gz"
    local_archive = settings.backups_dir / f"openclaw_migrate_{timestamp}.tar.gz"

    gateway = RemoteGateway(max_workers=2, command_timeout=settings.ssh_command_timeout)
    try:
        print("[Migrate 1/5] Connecting to source droplet...")
        await gateway.run(source_ip, source_key, "echo ok")
        print("[Migrate 1/5] Connected to source")

        print("[Migrate 2/5] Creating backup on source droplet...")
        try:
            await gateway.run(
                source_ip,
                source_key,
                f"cd /root && tar czf {remote_archive} .openclaw/ 2>/dev/null && echo ok",
            )
        except DeployError as e:
            raise BackupError(f"remote archive on {source_ip}: {e.message}") from e
        print("[Migrate 2/5] Remote backup created")

        print("[Migrate 3/5] Downloading backup from source...")
        try:
            await gateway.download(source_ip, source_key, remote_archive, local_archive)
        except DeployError as e:
            raise BackupError(f"download from {source_ip}: {e.message}") from e
        print(f"[Migrate 3/5] Backup downloaded: {local_archive}")
    finally:
        gateway.shutdown()

    print("[Migrate 4/5] Starting deploy to new droplet...")
    params = _params_from_args(settings, args, local_archive)
    record = await run_deploy(settings, params)

    print("\n[Migrate 5/5] Migration complete!")
    print(f"  Source: {source_ip}")
    print(f"  Target: {record.ip_address} ({record.hostname})")
    print(f"  SSH:    ssh -i {record.ssh_key_path} root@{record.ip_address}")


async def _status(settings: DeploySettings, args: argparse.Namespace) -> None:
    async with DigitalOceanClient(_require_token(settings, args)) as client:
        print("Fetching openclaw droplets...\n")
        droplets = await client.list_droplets()

    if not droplets:
        print("No droplets found with tag 'openclaw'.")
        return
    print(f"  {'ID':<12}  {'Name':<25}  {'IP':<18}  {'Region':<10}  {'Status':<10}")
    print("  " + "-" * 80)
    for d in droplets:
        print(
            f"  {d.id:<12}  {d.name:<25}  {d.public_ip or 'N/A':<18}  "
            f"{d.region.slug:<10}  {d.status:<10}"
        )
    print(f"\n  Total: {len(droplets)} droplet(s)")


async def _destroy(settings: DeploySettings, args: argparse.Namespace) -> int:
    token = _require_token(settings, args)
    async with DigitalOceanClient(token) as client:
        print("Fetching openclaw droplets...")
        droplets = await client.list_droplets()
        droplet = next((d for d in droplets if d.name == args.name), None)
        if droplet is None:
            raise UnclassifiedError(f"No openclaw droplet found with name '{args.name}'")

        ip = droplet.public_ip or "N/A"
        print("\nDroplet to destroy:")
        print(f"  Name:   {droplet.name}")
        print(f"  IP:     {ip}")
        print(f"  Region: {droplet.region.slug}")
        if not args.yes:
            print("Refusing to destroy without --yes.", file=sys.stderr)
            return int(ExitCode.CONFIG_ERROR)

        record = next(
            (r for r in DeployRecordStore(settings.deploys_dir).list_records()
             if r.droplet_id == droplet.id),
            None,
        )

        print(f"\nDeleting droplet '{droplet.name}' (ID {droplet.id})...")
        await client.delete_droplet(droplet.id)
        print("Droplet deleted.")

        suffix = droplet.name[len("openclaw-"):] if droplet.name.startswith("openclaw-") else droplet.name
        key_name = f"clawdeploy-{suffix}"
        keys = await client.list_ssh_keys()
        key = next(
            (k for k in keys
             if (record and k.fingerprint == record.ssh_key_fingerprint) or k.name == key_name),
            None,
        )
        if key is not None:
            print(f"Deleting SSH key '{key.name}' (ID {key.id}, fingerprint {key.fingerprint})...")
            await client.delete_ssh_key(key.id)
            print("SSH key deleted.")
        else:
            print(f"SSH key '{key_name}' not found; skipping.")

    if record is not None:
        local_keys = [Path(record.ssh_key_path)]
    else:
        local_keys = sorted(settings.keys_dir.glob(f"clawdeploy_{suffix}*"))
    for local_key in local_keys:
        if local_key.exists():
            local_key.unlink()
            print(f"Removed local key: {local_key}")
        else:
            print(f"Local key not found; skipping: {local_key}")

    print(f"\nDestroy complete for '{droplet.name}' ({ip}, {droplet.region.slug}).")
    return int(ExitCode.SUCCESS)


def _list_backups(settings: DeploySettings) -> None:
    backups_dir = settings.backups_dir
    entries = list_backup_files(backups_dir)
    if not entries:
        print(f"No backup archives found in {backups_dir}")
        return
    print(f"Backups in {backups_dir}:\n")
    print(f"  {'Name':<50}  {'Size':>10}  Date")
    print("  " + "-" * 80)
    for entry in entries:
        date = entry.modified.strftime("%Y-%m-%d %H:%M:%S UTC") if entry.modified else ""
        print(f"  {entry.name:<50}  {format_size(entry.size):>10}  {date}")
    print(f"\n  Total: {len(entries)} backup(s)")


def _serve(settings: DeploySettings, args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run(
        "clawdeploy.main:app",
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=False,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = DeploySettings()
    setup_logging(settings.log_level, console=True)

    try:
        if args.command == "deploy":
            asyncio.run(_deploy(settings, args))
        elif args.command == "migrate":
            asyncio.run(_migrate(settings, args))
        elif args.command == "status":
            asyncio.run(_status(settings, args))
        elif args.command == "destroy":
            return asyncio.run(_destroy(settings, args))
        elif args.command == "list-backups":
            _list_backups(settings)
        elif args.command == "serve":
            _serve(settings, args)
    except DeployError as e:
        logger.debug("command_failed", command=args.command, kind=e.kind.value)
        print(f"Error: {e.message}", file=sys.stderr)
        return int(e.exit_code)
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    return int(ExitCode.SUCCESS)


if __name__ == "__main__":
    sys.exit(main())
