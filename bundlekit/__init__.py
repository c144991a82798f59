"""bundlekit - 依赖解析、锁定与运行时激活"""

__version__ = "0.4.0"
