"""CLI — 解析 / 安装 / 检查命令"""

from __future__ import annotations

import click

from bundlekit.cli import _manager, run_guarded


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(update)
    group.add_command(lock)
    group.add_command(check)
    group.add_command(show)


@click.command()
@click.option("--without", multiple=True, help="不安装的分组或分组选择器（可重复，记录到锁文件）")
@run_guarded
def install(without: tuple[str, ...]) -> None:
    """按锁文件安装（锁缺失或与清单不一致时先解析）"""
    bm = _manager()
    installed = bm.install(without=list(without) if without else None)
    click.echo(f"安装完成: {len(installed)} 个包 -> {bm.install_root}")


@click.command()
@click.argument("names", nargs=-1)
@click.option("--source", "source_names", multiple=True, help="放开该包所在来源的全部包（可重复）")
@run_guarded
def update(names: tuple[str, ...], source_names: tuple[str, ...]) -> None:
    """重新解析；不带参数时放开全部包"""
    lockfile = _manager().update(names, source_names)
    click.echo(f"锁文件已更新: {len(lockfile.entries)} 个包")


@click.command()
@run_guarded
def lock() -> None:
    """只解析并写锁文件，不安装"""
    lockfile = _manager().lock()
    click.echo(f"已锁定 {len(lockfile.entries)} 个包")


@click.command()
@run_guarded
def check() -> None:
    """检查锁文件与清单一致且所需的包都已安装"""
    problems = _manager().check()
    if problems:
        for problem in problems:
            click.echo(f"  {problem}", err=True)
        raise SystemExit(1)
    click.echo("依赖已满足。")


@click.command()
@run_guarded
def show() -> None:
    """列出锁定的包"""
    for name, version, source in _manager().show():
        click.echo(f"  {name:24s} {version:12s} {source}")
