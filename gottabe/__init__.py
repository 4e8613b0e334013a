"""gottabe - 原生项目构建编排与二进制包管理"""

__version__ = "0.4.0"
