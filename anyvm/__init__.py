"""
anyvm - 通用开发工具版本管理器。
"""

__version__ = "0.1.0"
