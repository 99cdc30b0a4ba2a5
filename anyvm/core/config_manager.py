"""
配置管理器模块。

提供 anyvm 配置的加载、验证和访问功能。配置文件为 JSON：

    {
      "mirror": [{"from": "https://nodejs.org/dist/", "to": "https://npmmirror.com/mirrors/node/"}],
      "data_path": null,
      "delegates": {"rustup": {"path": null}},
      "settings": {"request_timeout": 30, "chunk_size": 65536}
    }

配置在启动时加载一次，之后只读。
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from platformdirs import user_config_dir, user_data_dir

from anyvm.utils.logger import get_logger
from anyvm.utils.input_validator import InputValidator, InputValidationError
from anyvm.core.mirror import MirrorConfigError, MirrorRewriter

logger = get_logger()

APP_NAME = "anyvm"
CONFIG_PATH_ENV = "ANYVM_CONFIG"
CONFIG_FILE_NAME = "config.json"


class ConfigValidationError(Exception):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(Exception):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def _atomic_save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件，防止写入中断导致文件损坏。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(temp_path, file_path)
    except BaseException:
        if temp_path.exists():
            temp_path.unlink()
        raise


def default_config_path() -> Path:
    """
    获取配置文件路径。

    优先使用环境变量 ANYVM_CONFIG，否则使用平台配置目录下的 config.json。
    """
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override)
    return Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILE_NAME


def default_data_path() -> Path:
    return Path(user_data_dir(APP_NAME, appauthor=False))


class ConfigManager:
    """
    配置管理器类。

    负责配置的加载、验证和访问。配置文件不存在时使用内置默认配置，
    不会自动创建文件；文件存在但无效时直接报错，而不是静默回退。
    """

    REQUIRED_FIELDS = {
        "mirror": list,
        "delegates": dict,
        "settings": dict,
    }

    SETTINGS_FIELDS = {
        "request_timeout": (int, float),
        "chunk_size": int,
    }

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        初始化配置管理器。

        参数:
            config_path: 配置文件路径，默认由 default_config_path() 决定
        """
        self.config_file = Path(config_path) if config_path else default_config_path()
        self._config: Dict[str, Any] = {}

    def _get_builtin_default_config(self) -> Dict[str, Any]:
        """获取内置默认配置。"""
        return {
            "mirror": [],
            "data_path": None,
            "delegates": {
                "rustup": {"path": None},
            },
            "settings": {
                "request_timeout": 30,
                "chunk_size": 64 * 1024,
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """
        加载配置文件。

        缺失的字段用默认值补齐。

        返回:
            配置字典

        抛出:
            ConfigLoadError: 文件无法读取或不是合法 JSON
            ConfigValidationError: 配置内容无效
        """
        defaults = self._get_builtin_default_config()
        if not self.config_file.exists():
            logger.debug(f"配置文件不存在，使用默认配置: {self.config_file}")
            self._config = defaults
            return self._config

        logger.debug(f"从文件加载配置: {self.config_file}")
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (IOError, OSError, json.JSONDecodeError) as e:
            raise ConfigLoadError(f"无法加载配置文件 {self.config_file}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigValidationError("配置文件顶层必须是对象")

        config = defaults
        for key, value in loaded.items():
            if key == "settings" and isinstance(value, dict):
                config["settings"].update(value)
            elif key == "delegates" and isinstance(value, dict):
                config["delegates"].update(value)
            else:
                config[key] = value

        self.validate_config(config)
        self._config = config
        logger.debug("配置加载成功")
        return self._config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        for field, expected_type in self.REQUIRED_FIELDS.items():
            if field not in config:
                raise ConfigValidationError(f"缺少必需字段: {field}")
            if not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            value = settings.get(field)
            if not isinstance(value, expected_type) or isinstance(value, bool) or value <= 0:
                raise ConfigValidationError(f"字段 'settings.{field}' 必须是正数，实际为 {value!r}")

        data_path = config.get("data_path")
        if data_path is not None and not isinstance(data_path, str):
            raise ConfigValidationError("字段 'data_path' 必须是字符串或 null")

        for name, delegate in config["delegates"].items():
            if not isinstance(delegate, dict):
                raise ConfigValidationError(f"字段 'delegates.{name}' 必须是对象")
            path = delegate.get("path")
            if path is not None and not isinstance(path, str):
                raise ConfigValidationError(f"字段 'delegates.{name}.path' 必须是字符串或 null")

        try:
            MirrorRewriter.from_config(config["mirror"])
        except MirrorConfigError as e:
            raise ConfigValidationError(str(e)) from e

        logger.debug("配置验证通过")
        return True

    def save_default_config(self) -> bool:
        """
        在配置路径写入默认配置。

        返回:
            写入了新文件返回 True，文件已存在返回 False

        抛出:
            ConfigSaveError: 写入失败
        """
        if self.config_file.exists():
            return False
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            _atomic_save_json(self.config_file, self._get_builtin_default_config())
        except (IOError, OSError) as e:
            raise ConfigSaveError(f"无法保存默认配置到 {self.config_file}: {e}") from e
        logger.info(f"默认配置已保存到 {self.config_file}")
        return True

    @property
    def config(self) -> Dict[str, Any]:
        """
        获取配置字典（延迟加载）。

        返回:
            配置字典
        """
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.config)

    def get(self, key: str, default: Any = None) -> Any:
        """
        按点分路径获取配置值，例如 "delegates.rustup.path"。

        参数:
            key: 配置键名
            default: 默认值

        返回:
            配置值或默认值
        """
        return InputValidator.safe_get_config_value(self.config, key, default)

    def get_mirror_rules(self) -> List[Dict[str, str]]:
        return list(self.config["mirror"])

    def get_mirror_rewriter(self) -> MirrorRewriter:
        return MirrorRewriter.from_config(self.config["mirror"])

    def get_data_path(self) -> Path:
        """
        获取标签存储的数据根目录。

        返回:
            配置中的 data_path，未配置时为平台数据目录
        """
        data_path = self.config.get("data_path")
        if data_path:
            return Path(os.path.expanduser(data_path))
        return default_data_path()

    def get_delegate_path(self, name: str) -> Optional[str]:
        try:
            InputValidator.validate_tool_name(name)
        except InputValidationError as e:
            raise ConfigValidationError(str(e)) from e
        return self.get(f"delegates.{name}.path")

    def get_request_timeout(self) -> float:
        return self.config["settings"]["request_timeout"]

    def get_chunk_size(self) -> int:
        return self.config["settings"]["chunk_size"]
