"""角色处理 - 群体角色展开与韩语数词解析

故事模型常把一群相同的角色写成一条，例如 "Dwarf × 7"、"Thief x 3"、
"일곱 난쟁이"、"난쟁이 7명"。插图需要每个成员都有独立的名字和描述，
所以在入库前展开为 Dwarf1..Dwarf7。
"""

import re
from typing import Optional

from .models import Character

MAX_GROUP_SIZE = 20

# 固有词数词（包括修饰形式 한/두/세/네/스무）
NATIVE_UNITS = {
    "하나": 1, "한": 1,
    "둘": 2, "두": 2,
    "셋": 3, "세": 3, "석": 3,
    "넷": 4, "네": 4, "넉": 4,
    "다섯": 5,
    "여섯": 6,
    "일곱": 7,
    "여덟": 8,
    "아홉": 9,
}
NATIVE_TENS = {"열": 10, "스물": 20, "스무": 20, "서른": 30, "마흔": 40, "쉰": 50}

# 汉字词数词
SINO_DIGITS = {"일": 1, "이": 2, "삼": 3, "사": 4, "오": 5, "육": 6, "륙": 6, "칠": 7, "팔": 8, "구": 9}
SINO_UNITS = {"십": 10, "백": 100}

COUNTERS = ("명", "마리", "개", "분")

_MULTIPLIER = re.compile(r"^(?P<base>.+?)(?:\s+[xX*]\s*|\s*×\s*)(?P<count>\d+)$")
_PAREN_COUNT = re.compile(r"^(?P<base>.+?)\s*\(\s*(?P<count>[^()]+?)\s*\)$")
_LEADING_DIGITS = re.compile(r"^(?P<count>\d+)\s*(?:명|마리|개|분)?\s+(?P<base>.+)$")
_TRAILING_COUNTED = re.compile(r"^(?P<base>.+?)\s+(?P<count>\S+?)\s*(?:명|마리|개|분)$")


def parse_korean_number(text: str) -> Optional[int]:
    """解析数字、固有词数词或汉字词数词

    支持 "7"、"일곱"、"열두"、"스물"、"칠"、"십이" 等形式，末尾的量词
    （명/마리/개/분）会被忽略。无法识别时返回 None。

    Args:
        text: 待解析的文本

    Returns:
        解析出的正整数或 None
    """
    token = text.strip().replace(" ", "")
    for counter in COUNTERS:
        if token.endswith(counter) and len(token) > len(counter):
            token = token[: -len(counter)]
            break

    if not token:
        return None
    if token.isdigit():
        return int(token)

    native = _parse_native(token)
    if native is not None:
        return native
    return _parse_sino(token)


def _parse_native(token: str) -> Optional[int]:
    total = 0
    rest = token
    for word, value in sorted(NATIVE_TENS.items(), key=lambda kv: -len(kv[0])):
        if rest.startswith(word):
            total = value
            rest = rest[len(word):]
            break
    if not rest:
        return total or None
    unit = NATIVE_UNITS.get(rest)
    if unit is None:
        return None
    return total + unit


def _parse_sino(token: str) -> Optional[int]:
    total = 0
    current = 0
    for char in token:
        if char in SINO_DIGITS:
            current = SINO_DIGITS[char]
        elif char in SINO_UNITS:
            total += (current or 1) * SINO_UNITS[char]
            current = 0
        else:
            return None
    total += current
    return total or None


def _split_leading_native(name: str) -> Optional[tuple[str, int]]:
    """"일곱 난쟁이" / "세 마리 돼지" -> ("난쟁이", 7) / ("돼지", 3)"""
    parts = name.split()
    if len(parts) < 2:
        return None
    count = _parse_native(parts[0])
    if count is None:
        return None
    rest = parts[1:]
    if rest and rest[0] in COUNTERS:
        rest = rest[1:]
    if not rest:
        return None
    return " ".join(rest), count


def parse_group_name(name: str) -> tuple[str, int]:
    """拆分群体角色名

    Returns:
        (基础名, 数量)，非群体角色返回 (原名, 1)
    """
    stripped = name.strip()

    match = _MULTIPLIER.match(stripped)
    if match:
        return match.group("base").strip(), int(match.group("count"))

    match = _PAREN_COUNT.match(stripped)
    if match:
        count = parse_korean_number(match.group("count"))
        if count:
            return match.group("base").strip(), count

    match = _LEADING_DIGITS.match(stripped)
    if match:
        return match.group("base").strip(), int(match.group("count"))

    match = _TRAILING_COUNTED.match(stripped)
    if match:
        count = parse_korean_number(match.group("count"))
        if count:
            return match.group("base").strip(), count

    leading = _split_leading_native(stripped)
    if leading:
        return leading

    return stripped, 1


def expand_group_character(character: Character) -> list[Character]:
    """将一个群体角色展开为多个带编号的角色

    数量为 1、无法识别或超过 MAX_GROUP_SIZE 时原样返回。
    """
    base, count = parse_group_name(character.name)
    if count <= 1 or count > MAX_GROUP_SIZE:
        return [character]

    return [
        character.model_copy(
            update={
                "name": f"{base}{i}",
                "description": f"{character.description} (#{i})",
                "reference_image": None,
            }
        )
        for i in range(1, count + 1)
    ]


def expand_group_characters(characters: list[Character]) -> list[Character]:
    """展开列表中的所有群体角色，保持原有顺序"""
    expanded: list[Character] = []
    for character in characters:
        expanded.extend(expand_group_character(character))
    return expanded
