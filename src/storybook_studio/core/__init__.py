"""核心模块 - 绘本数据模型、批量编排与应用状态"""

from .models import Character, KeyObject, Page, Quiz, Storybook, TargetAge

__all__ = ["Character", "KeyObject", "Page", "Quiz", "Storybook", "TargetAge"]
