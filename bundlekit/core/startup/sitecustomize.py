"""bundlekit exec 子进程的启动钩子

BUNDLEKIT_LOAD_PATH 存在时：锁定包的 load path 置前，移除全局和用户级
site-packages。只依赖标准库，不能导入 bundlekit 及其依赖，否则这些模块会
留在 sys.modules 中。重复执行结果不变。
"""

import importlib
import os
import site
import sys


def _restrict():
    raw = os.environ.get("BUNDLEKIT_LOAD_PATH")
    if raw is None:
        return
    load_paths = [p for p in raw.split(os.pathsep) if p]
    excluded = {os.path.normpath(d) for d in site.getsitepackages()}
    user_site = site.getusersitepackages()
    if isinstance(user_site, str):
        excluded.add(os.path.normpath(user_site))

    result = []
    for entry in load_paths + sys.path:
        if entry in result:
            continue
        if entry and os.path.normpath(entry) in excluded:
            continue
        result.append(entry)
    sys.path[:] = result
    importlib.invalidate_caches()


_restrict()
