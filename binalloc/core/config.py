# binalloc/core/config.py
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    全局应用配置（环境变量 / .env）
    """

    # 运行环境
    ENV: str = Field(default="dev")
    DEBUG: bool = Field(default=True)

    # 数据库（仅 STORE_BACKEND=sql 时使用）
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./binalloc.db",
        description="异步连接串，例如：sqlite+aiosqlite:///./binalloc.db 或 postgresql+psycopg://...",
    )
    SQL_ECHO: bool = Field(default=False)

    # 日志
    LOG_LEVEL: str = Field(default="INFO")
    JSON_LOG: bool = Field(default=False)

    # 存储后端：memory | sql
    STORE_BACKEND: str = Field(default="memory")

    # 库位持有
    BIN_LOCK_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    BIN_LOCK_STALE_SECONDS: float = Field(default=600.0, gt=0)

    # 上架策略：True = 放不下就整单不动
    PUTAWAY_REQUIRE_FULL: bool = Field(default=False)

    # 跨域白名单（JSON 数组，例如 ["http://localhost:5173"]）；为空则不挂 CORS
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> AppSettings:
    """全局单例设置入口。"""
    return AppSettings()
