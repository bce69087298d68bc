import argparse
import asyncio
from sqlalchemy import select
from app.core.crypto import LegacyPlaintext, get_cipher
from app.core.db import AsyncSessionLocal
from app.core.security import hash_password
from app.models.panel_config import PanelConfig
from app.models.user import User
from app.services.panel.factory import clear_panel_config_cache
from app.tasks.addresses import backfill_addresses_async


async def create_superadmin(username: str, email: str, password: str):
    async with AsyncSessionLocal() as db:
        q = await db.execute(select(User).where((User.username == username) | (User.email == email)))
        if q.scalar_one_or_none():
            raise SystemExit("User already exists")
        admin = User(
            username=username,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            role="admin",
        )
        db.add(admin)
        await db.commit()
        print("Created superadmin:", username)


async def migrate_panel_key(dry_run: bool = False) -> bool:
    """Re-encrypt a panel API key stored before encryption existed. Returns True when a row was migrated."""
    cipher = get_cipher()
    async with AsyncSessionLocal() as db:
        q = await db.execute(select(PanelConfig).order_by(PanelConfig.id.desc()).limit(1))
        row = q.scalar_one_or_none()
        if not row or not row.api_key:
            print("No stored panel configuration")
            return False

        secret = cipher.decrypt(row.api_key)
        if not isinstance(secret, LegacyPlaintext):
            print("Panel API key is already encrypted")
            return False

        if dry_run:
            print("[DRY-RUN] panel API key is stored as plaintext and would be encrypted")
            return False

        row.api_key = cipher.encrypt(secret.plaintext)
        await db.commit()
    clear_panel_config_cache()
    print("Panel API key encrypted")
    return True


async def backfill_addresses(batch_size: int):
    stats = await backfill_addresses_async(batch_size=batch_size)
    if stats.skipped:
        print("Panel is not configured; nothing to do")
        return
    print(
        f"[ADDRESS-BACKFILL] scanned={stats.scanned_servers} updated={stats.updated_servers} "
        f"still_missing={stats.still_missing}"
    )


def main():
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    sub = parser.add_subparsers(dest="cmd")

    c = sub.add_parser("create-superadmin")
    c.add_argument("--username", required=True)
    c.add_argument("--email", required=True)
    c.add_argument("--password", required=True)

    m = sub.add_parser("migrate-panel-key")
    m.add_argument("--dry-run", action="store_true")

    b = sub.add_parser("backfill-addresses")
    b.add_argument("--batch-size", type=int, default=200)

    args = parser.parse_args()
    if args.cmd == "create-superadmin":
        asyncio.run(create_superadmin(args.username, args.email, args.password))
    elif args.cmd == "migrate-panel-key":
        asyncio.run(migrate_panel_key(dry_run=args.dry_run))
    elif args.cmd == "backfill-addresses":
        asyncio.run(backfill_addresses(args.batch_size))
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
