"""設定管理 - 環境変数の型安全な読み込み"""

import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

STORAGE_MEMORY = "memory"
STORAGE_FIRESTORE = "firestore"


@dataclass(frozen=True)
class AppConfig:
    """アプリケーション設定"""
    storage: str = STORAGE_MEMORY
    firestore_project_id: str = ""
    firestore_database: str = "(default)"
    timezone_name: str = "UTC"

    @property
    def timezone(self) -> ZoneInfo:
        """集計・リマインダーの日付境界に使うタイムゾーン"""
        return ZoneInfo(self.timezone_name)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """環境変数から設定を読み込む"""
        load_dotenv()

        storage = os.getenv("CHOREBOOK_STORAGE", STORAGE_MEMORY).strip().lower()
        if storage not in (STORAGE_MEMORY, STORAGE_FIRESTORE):
            raise ValueError(f"CHOREBOOK_STORAGE must be 'memory' or 'firestore', got {storage!r}")

        project_id = os.getenv("FIRESTORE_PROJECT_ID", "")
        if storage == STORAGE_FIRESTORE and not project_id:
            raise ValueError("FIRESTORE_PROJECT_ID is not set in environment")

        timezone_name = os.getenv("CHOREBOOK_TIMEZONE", "UTC")
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"CHOREBOOK_TIMEZONE is not a valid IANA timezone: {timezone_name}") from e

        return cls(
            storage=storage,
            firestore_project_id=project_id,
            firestore_database=os.getenv("FIRESTORE_DATABASE", "(default)"),
            timezone_name=timezone_name,
        )
