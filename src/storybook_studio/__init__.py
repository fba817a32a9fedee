"""儿童绘本工作室 - 调用 Gemini 生成插图故事书"""

__version__ = "0.3.0"
