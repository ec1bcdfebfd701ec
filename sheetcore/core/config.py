"""配置"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """计算核心配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SHEETCORE_",
        case_sensitive=False,
        extra="ignore",  # 忽略 .env 中未声明的变量，避免 ValidationError
    )

    # 应用配置
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 资源上限（超出时截断并报告，不报错）
    MAX_RANGE_CELLS: int = Field(default=50_000, gt=0)
    MAX_PIVOT_ROWS: int = Field(default=100_000, gt=0)
    MAX_FORMULA_DEPTH: int = Field(default=32, gt=0)

    # 列类型判定：非空值中可解析为数值（或日期）的比例
    NUMERIC_COLUMN_RATIO: float = Field(default=0.7, gt=0, le=1)

    # 趋势分析
    TREND_SLOPE_EPSILON: float = Field(default=0.1, ge=0)
    TREND_R2_THRESHOLD: float = Field(default=0.3, ge=0, le=1)
    FORECAST_PERIODS: int = Field(default=5, ge=0)
    MIN_TREND_POINTS: int = Field(default=3, ge=2)

    # 异常值检测
    OUTLIER_Z_THRESHOLD: float = Field(default=1.96, gt=0)
    MAX_OUTLIERS_PER_COLUMN: int = Field(default=10, gt=0)

    # 分布直方图
    HISTOGRAM_BINS: int = Field(default=10, gt=0)


settings = Settings()
