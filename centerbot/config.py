from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv


@dataclass
class Config:
    bot_token: str
    admin_ids: List[int]
    database_path: str
    log_level: str = "INFO"
    log_file: str = os.path.join("data", "bot.log")
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 3
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_start_tls: bool = True
    email_from: str = ""
    email_from_name: str = "Training Center"
    public_url: str = ""


def _parse_admin_ids(raw: str) -> List[int]:
    ids: List[int] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            ids.append(int(chunk))
        except ValueError:
            continue
    return ids


def _parse_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "y", "on"):
        return True
    if value in ("0", "false", "no", "n", "off"):
        return False
    return default


def _parse_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def load_config() -> Config:
    load_dotenv()
    token = os.getenv("BOT_TOKEN")
    if not token:
        raise RuntimeError("BOT_TOKEN is required. Set it in .env")

    db_path = os.getenv("DATABASE_PATH", os.path.join("data", "bot.db"))
    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    return Config(
        bot_token=token,
        admin_ids=_parse_admin_ids(os.getenv("ADMIN_IDS", "")),
        database_path=db_path,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE", os.path.join("data", "bot.log")),
        log_max_bytes=_parse_int(os.getenv("LOG_MAX_BYTES"), 5 * 1024 * 1024),
        log_backup_count=_parse_int(os.getenv("LOG_BACKUP_COUNT"), 3),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=_parse_int(os.getenv("SMTP_PORT"), 587),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_start_tls=_parse_bool(os.getenv("SMTP_START_TLS"), default=True),
        email_from=os.getenv("EMAIL_FROM", ""),
        email_from_name=os.getenv("EMAIL_FROM_NAME", "Training Center"),
        public_url=os.getenv("PUBLIC_URL", ""),
    )
