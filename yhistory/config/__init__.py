"""配置模块

- AppSettings: 聚合配置，支持 YAML + 环境变量
- 子配置类: DatabaseSettings, LoggingSettings, VersioningSettings
- ConfigLoader: YAML 配置加载器

配置优先级: 环境变量 > YAML 文件 > 默认值
"""

from .settings import (
    AppSettings,
    DatabaseSettings,
    LoggingSettings,
    VersioningSettings,
)

from .loader import (
    ConfigLoader,
    load_yaml_config,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "VersioningSettings",
    "ConfigLoader",
    "load_yaml_config",
]
