"""子进程启动钩子目录

exec 启动的命令把本目录放在 PYTHONPATH 最前面，子进程中的 Python 解释器
启动时会导入这里的 sitecustomize，把 sys.path 限制为锁定集合。
"""

import os

HOOK_DIR = os.path.dirname(os.path.abspath(__file__))
