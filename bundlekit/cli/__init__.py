"""bundlekit 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
业务异常统一在 run_guarded() 中转换为错误提示和退出码。
"""

import functools
import os
import sys
from typing import Any, Callable

import click

from bundlekit import __version__
from bundlekit.core.config import init_config
from bundlekit.core.exceptions import BundleKitError
from bundlekit.utils.logger import setup_logging


def _manager() -> Any:
    """当前目录所属项目的 BundleManager"""
    from bundlekit.core.bundle_manager import BundleManager, find_project_root
    return BundleManager(find_project_root())


def run_guarded(func: Callable[..., Any]) -> Callable[..., Any]:
    """把 BundleKitError 转为 stderr 提示 + 对应退出码"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except BundleKitError as e:
            click.echo(str(e), err=True)
            sys.exit(e.exit_code)

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="", help="配置文件路径（默认读取 BUNDLEKIT_CONFIG）")
def main(config_path: str) -> None:
    """bundlekit - 依赖解析、锁定与隔离执行"""
    setup_logging(
        level=os.getenv("BUNDLEKIT_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("BUNDLEKIT_LOG_JSON", "") == "1",
    )
    init_config(config_path)


# 注册各领域子命令
from bundlekit.cli.cmd_bundle import register as _reg_bundle  # noqa: E402
from bundlekit.cli.cmd_exec import register as _reg_exec  # noqa: E402

_reg_bundle(main)
_reg_exec(main)
