"""CLI — 在锁定环境中执行命令"""

from __future__ import annotations

import sys

import click

from bundlekit.cli import _manager, run_guarded


def register(group: click.Group) -> None:
    group.add_command(exec_cmd)


@click.command(
    name="exec",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("argv", nargs=-1, required=True, type=click.UNPROCESSED)
@run_guarded
def exec_cmd(argv: tuple[str, ...]) -> None:
    """在锁定的环境中执行命令，退出码与子进程一致"""
    sys.exit(_manager().exec(list(argv)))
