"""统一异常体系

所有业务异常继承 BundleKitError，替代散落的 ValueError / RuntimeError。
CLI 层可据此输出友好提示并映射退出码。
"""

from __future__ import annotations

from dataclasses import dataclass, field


class BundleKitError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"
    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(BundleKitError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ManifestError(BundleKitError):
    """清单中存在重复或矛盾的依赖声明"""

    code = "MANIFEST_ERROR"


@dataclass(frozen=True)
class ConflictCause:
    """冲突中的一条约束：谁（依赖链）对哪个包提出了什么版本要求"""

    name: str
    constraint: str
    chain: tuple[str, ...] = ()

    def describe(self) -> str:
        origin = " -> ".join(self.chain) if self.chain else "清单"
        return f"{origin} 要求 {self.name} ({self.constraint or '任意版本'})"


@dataclass(frozen=True)
class Conflict:
    """单个包名上的不可满足约束集合"""

    name: str
    causes: tuple[ConflictCause, ...] = field(default_factory=tuple)


class ResolutionFailure(BundleKitError):
    """不存在满足全部约束的版本组合"""

    code = "RESOLUTION_FAILURE"

    def __init__(self, conflicts: list[Conflict]) -> None:
        self.conflicts = conflicts
        lines = ["无法解析依赖:"]
        for conflict in conflicts:
            lines.append(f"  {conflict.name}:")
            lines.extend(f"    {cause.describe()}" for cause in conflict.causes)
        super().__init__("\n".join(lines))

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.conflicts]


class SourceUnavailable(BundleKitError):
    """来源（registry / VCS 远端）暂时不可达，可重试"""

    code = "SOURCE_UNAVAILABLE"

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"来源不可用: {source} ({reason})")
        self.source = source
        self.reason = reason


class RepositoryMissing(BundleKitError):
    """已知的 VCS 仓库控制目录被外部删除"""

    code = "REPOSITORY_MISSING"

    def __init__(self, path: str) -> None:
        super().__init__(f"Git 仓库不存在或已损坏: {path}")
        self.path = path


class CorruptLock(BundleKitError):
    """锁文件结构无效"""

    code = "CORRUPT_LOCK"


class InstallError(BundleKitError):
    """物化某个包失败，整次安装中止"""

    code = "INSTALL_ERROR"

    def __init__(self, package: str, source: str, reason: str) -> None:
        super().__init__(f"安装 {package} 失败 (来源 {source}): {reason}")
        self.package = package
        self.source = source
        self.reason = reason


class CommandNotFound(BundleKitError):
    """exec 请求的命令不存在"""

    code = "COMMAND_NOT_FOUND"
    exit_code = 127

    def __init__(self, command: str) -> None:
        super().__init__(
            f"bundlekit: command not found: {command}\n"
            "Install missing package executables with `bundlekit install`"
        )
        self.command = command


class NotExecutable(BundleKitError):
    """exec 请求的文件存在但没有可执行权限"""

    code = "NOT_EXECUTABLE"
    exit_code = 126

    def __init__(self, command: str) -> None:
        super().__init__(f"bundlekit: not executable: {command}")
        self.command = command
