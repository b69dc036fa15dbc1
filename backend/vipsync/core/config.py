"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

集成配置说明：
- MERCADOPAGO_*: 支付服务（Mercado Pago）
- DISCORD_*: Discord 机器人，用于分配 VIP 角色
- RUST_*: 游戏服务器 REST API，用于授予 VIP 权限
- ADMIN_* / INTERNAL_API_KEY: 管理与定时任务接口的共享密钥

集成配置缺失时不会阻止启动，对应的适配器直接返回失败。
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,  # URL 类型验证
    BeforeValidator,  # 验证前转换
    HttpUrl,  # HTTP URL 类型验证
    PostgresDsn,  # PostgreSQL 连接字符串验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持逗号分隔的字符串或 JSON 列表。
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,  # 忽略空的环境变量
        extra="ignore",  # 忽略未定义的额外字段
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（与身份服务共享）
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS 允许的源（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str = "VIP Sync"
    SENTRY_DSN: HttpUrl | None = None
    PUBLIC_BASE_URL: str = "http://localhost:8000"  # 回调地址与通知地址的前缀

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis（定时任务锁、上次执行结果）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    # 出站 HTTP 调用
    HTTP_TIMEOUT_SECONDS: float = 10.0
    RETRY_ATTEMPTS: int = 3  # 总尝试次数（含首次）
    RETRY_INITIAL_DELAY_SECONDS: float = 0.5
    RETRY_BACKOFF_FACTOR: float = 2.0
    RETRY_JITTER_RATIO: float = 0.15  # ±15%
    RETRY_MAX_DELAY_SECONDS: float = 5.0

    # Mercado Pago
    MERCADOPAGO_API_URL: str = "https://api.mercadopago.com"
    MERCADOPAGO_ACCESS_TOKEN: str | None = None
    MERCADOPAGO_WEBHOOK_SECRET: str | None = None  # x-signature 校验密钥（可选）
    MERCADOPAGO_MAX_INSTALLMENTS: int = 1
    PAYMENT_CACHE_TTL_SECONDS: float = 60.0
    PAYMENT_CACHE_MAX_ENTRIES: int = 500
    PROCESSED_NOTIFICATIONS_MAX: int = 1000

    # 计划价格（BRL），环境变量中以 JSON 配置
    PLAN_PRICES: dict[str, Decimal] = {
        "vip-basic": Decimal("19.90"),
        "vip-plus": Decimal("39.90"),
    }

    # Discord
    DISCORD_API_URL: str = "https://discord.com/api/v10"
    DISCORD_BOT_TOKEN: str | None = None
    DISCORD_SERVER_ID: str | None = None
    DISCORD_VIP_BASIC_ROLE_ID: str | None = None
    DISCORD_VIP_PLUS_ROLE_ID: str | None = None

    # Rust 游戏服务器
    RUST_API_URL: str | None = None
    RUST_API_KEY: str | None = None
    RUST_SERVER_IP: str | None = None

    # 订阅
    SUBSCRIPTION_DURATION_DAYS: int = 30
    PENDING_SWEEP_BATCH_SIZE: int = 50
    PENDING_SWEEP_BUDGET_SECONDS: float = 28.0
    PENDING_SWEEP_LOCK_TTL_SECONDS: int = 60

    # 管理 / 定时任务接口
    ADMIN_API_KEY: str | None = None  # X-Admin-Key
    ADMIN_CRON_SECRET: str | None = None  # Authorization: Bearer <secret>
    INTERNAL_API_KEY: str | None = None  # X-API-Key 或 ?apiKey=

    # 调度器（cron 表达式，空值表示不调度该任务）
    SCHEDULE_PENDING_PAYMENTS: str | None = "*/10 * * * *"
    SCHEDULE_EXPIRED_SUBSCRIPTIONS: str | None = "0 * * * *"
    SCHEDULE_SYNC_PERMISSIONS: str | None = "30 */6 * * *"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def discord_vip_roles(self) -> dict[str, str]:
        """计划 ID → Discord 角色 ID（仅包含已配置的角色）"""
        roles = {
            "vip-basic": self.DISCORD_VIP_BASIC_ROLE_ID,
            "vip-plus": self.DISCORD_VIP_PLUS_ROLE_ID,
        }
        return {plan: role for plan, role in roles.items() if role}

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        本地环境只发出警告，其他环境直接报错。
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("ADMIN_API_KEY", self.ADMIN_API_KEY)
        self._check_default_secret("ADMIN_CRON_SECRET", self.ADMIN_CRON_SECRET)
        self._check_default_secret("INTERNAL_API_KEY", self.INTERNAL_API_KEY)

        return self


# 创建全局配置实例，整个应用共享
settings = Settings()  # type: ignore
