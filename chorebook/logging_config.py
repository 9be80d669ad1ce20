"""ロギング設定モジュール

Cloud Run / Cloud Logging 環境ではJSON形式、ローカルではテキスト形式でログを出力する。
サービス層は log_context() で group_id / actor_id などを構造化フィールドとして渡し、
JSON 出力ではそれがトップレベルのキーになる（Cloud Logging で絞り込める）。

使い方:
    from chorebook.logging_config import log_context, setup_logging
    setup_logging()
    logger.info("Recorded chore", extra=log_context(group_id=group.id, actor_id=actor_id))

環境変数:
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL) デフォルト: INFO
    LOG_FORMAT: "json" / "text" を明示すると環境判定より優先する
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境判定（自動設定される）
"""

import json
import logging
import os
import uuid
from datetime import datetime

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def log_context(**fields) -> dict:
    """
    logger の extra に渡す構造化フィールドを組み立てる。

    None のフィールドは落とし、UUID / datetime は文字列にする。

    Returns:
        dict: {"extra_fields": {...}}
    """
    return {"extra_fields": {key: _plain(value) for key, value in fields.items() if value is not None}}


def _plain(value):
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class CloudLoggingFormatter(logging.Formatter):
    """Cloud Logging互換のJSONフォーマッタ

    `severity` フィールドで Cloud Logging 側のログレベルに対応づく。
    log_context() で渡したフィールドはトップレベルに展開するが、
    severity などの予約キーは上書きしない。
    """

    LEVEL_TO_SEVERITY = {
        "DEBUG": "DEBUG",
        "INFO": "INFO",
        "WARNING": "WARNING",
        "ERROR": "ERROR",
        "CRITICAL": "CRITICAL",
    }
    RESERVED_KEYS = frozenset({"severity", "message", "logger", "timestamp", "exception"})

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {}
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_entry.update({k: v for k, v in extra_fields.items() if k not in self.RESERVED_KEYS})

        log_entry["severity"] = self.LEVEL_TO_SEVERITY.get(record.levelname, "DEFAULT")
        log_entry["message"] = record.getMessage()
        log_entry["logger"] = record.name
        log_entry["timestamp"] = self.formatTime(record, "%Y-%m-%dT%H:%M:%S")
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def _use_json() -> bool:
    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format in ("json", "text"):
        return log_format == "json"
    # K_SERVICE: Cloud Run Services, CLOUD_RUN_JOB: Cloud Run Jobs
    return bool(os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB"))


def setup_logging() -> None:
    """ルートロガーを初期化する（複数回呼んでもハンドラは1つ）"""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    if _use_json():
        handler.setFormatter(CloudLoggingFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.handlers.clear()
    root_logger.addHandler(handler)
