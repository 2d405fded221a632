# quizai/services/fallback_images.py
"""
Deterministic, non-AI images used when generation is unavailable or fails,
plus the era/keyword helpers that turn a quiz question into an image prompt.
"""
from typing import List, NamedTuple, Optional, Sequence, Tuple

_UNSPLASH = "https://images.unsplash.com/photo-{}?w=1024&q=80"

DEFAULT_FALLBACK_URL = _UNSPLASH.format("1461360370896-922624d12aa1")

# (pattern, url): 위에서부터 검사, 첫 번째로 포함되는 패턴이 이긴다.
# 인물/유물처럼 구체적인 이름을 시대 이름보다 먼저 둔다.
FALLBACK_RULES: Tuple[Tuple[str, str], ...] = (
    ("세종대왕", _UNSPLASH.format("1524995997946-a1c2e315a42f")),
    ("훈민정음", _UNSPLASH.format("1456513080510-7bf3a84b82f8")),
    ("한글", _UNSPLASH.format("1456513080510-7bf3a84b82f8")),
    ("이순신", _UNSPLASH.format("1583562835057-b06c1c4d0c3f")),
    ("거북선", _UNSPLASH.format("1583562835057-b06c1c4d0c3f")),
    ("임진왜란", _UNSPLASH.format("1583562835057-b06c1c4d0c3f")),
    ("민주항쟁", _UNSPLASH.format("1529107386315-e1a2ed48a620")),
    ("독립운동", _UNSPLASH.format("1557804506-669a67965ba0")),
    ("3·1운동", _UNSPLASH.format("1557804506-669a67965ba0")),
    ("광복", _UNSPLASH.format("1557804506-669a67965ba0")),
    ("청자", _UNSPLASH.format("1610701596007-11502861dcfa")),
    ("백자", _UNSPLASH.format("1610701596007-11502861dcfa")),
    ("경복궁", _UNSPLASH.format("1693928105595-b323b02791ff")),
    ("첨성대", _UNSPLASH.format("1583149577728-9ba4bb93b0b0")),
    ("불국사", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("고려시대", _UNSPLASH.format("1548013146-72479768bada")),
    ("고려", _UNSPLASH.format("1548013146-72479768bada")),
    ("조선시대", _UNSPLASH.format("1558618666-fcd25c85cd64")),
    ("조선", _UNSPLASH.format("1558618666-fcd25c85cd64")),
    ("고구려", _UNSPLASH.format("1583149577728-9ba4bb93b0b0")),
    ("백제", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("신라", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("고조선", _UNSPLASH.format("1528819622765-d6bcf132f793")),
)


def match_fallback(prompt: str, rules: Sequence[Tuple[str, str]] = FALLBACK_RULES,
                   default: str = DEFAULT_FALLBACK_URL) -> str:
    text = prompt or ""
    for pattern, url in rules:
        if pattern in text:
            return url
    return default


# ---------------------------------------------------------------------------
# 카테고리별 대체 이미지 (퀴즈 카테고리 문자열 기준)
# ---------------------------------------------------------------------------
CATEGORY_FALLBACKS: Tuple[Tuple[str, str], ...] = (
    ("고조선", _UNSPLASH.format("1528819622765-d6bcf132f793")),
    ("청동기시대", _UNSPLASH.format("1528819622765-d6bcf132f793")),
    ("철기시대", _UNSPLASH.format("1528819622765-d6bcf132f793")),
    ("부여", _UNSPLASH.format("1528819622765-d6bcf132f793")),
    ("삼국시대", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("고구려", _UNSPLASH.format("1583149577728-9ba4bb93b0b0")),
    ("백제", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("신라", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("통일신라", _UNSPLASH.format("1578469550956-0e16b69c6a3d")),
    ("고려", _UNSPLASH.format("1583149577728-9ba4bb93b0b0")),
    ("조선", _UNSPLASH.format("1693928105595-b323b02791ff")),
    ("근현대", _UNSPLASH.format("1583562835057-b06c1c4d0c3f")),
    ("인물", _UNSPLASH.format("1555854877-bab0e564b8d5")),
)
CATEGORY_DEFAULT_URL = _UNSPLASH.format("1528819622765-d6bcf132f793")


def category_fallback_url(category: Optional[str]) -> str:
    """Partial match in both directions ("조선시대" ↔ "조선")."""
    if not category:
        return CATEGORY_DEFAULT_URL
    for key, url in CATEGORY_FALLBACKS:
        if key in category or category in key:
            return url
    return CATEGORY_DEFAULT_URL


class EraInfo(NamedTuple):
    era: str
    topic: str


CATEGORY_TO_ERA = {
    "고조선": EraInfo("고조선", "고조선 문명"),
    "청동기시대": EraInfo("고조선", "청동기 문화"),
    "철기시대": EraInfo("삼국시대 이전", "철기 문화"),
    "부여": EraInfo("삼국시대 이전", "부여 왕국"),
    "옥저": EraInfo("삼국시대 이전", "옥저"),
    "동예": EraInfo("삼국시대 이전", "동예"),
    "삼한": EraInfo("삼국시대 이전", "삼한"),
    "고구려": EraInfo("삼국시대", "고구려"),
    "백제": EraInfo("삼국시대", "백제"),
    "신라": EraInfo("삼국시대", "신라"),
    "삼국시대": EraInfo("삼국시대", "삼국 문화"),
    "통일신라": EraInfo("통일신라", "통일신라 불교 문화"),
    "발해": EraInfo("통일신라", "발해"),
    "고려": EraInfo("고려시대", "고려 문화"),
    "고려시대": EraInfo("고려시대", "고려 문화"),
    "조선": EraInfo("조선시대", "조선 유교 문화"),
    "조선시대": EraInfo("조선시대", "조선 유교 문화"),
    "근현대": EraInfo("근현대", "한국 근현대사"),
    "인물": EraInfo("조선시대", "역사 인물"),
}


def category_to_era(category: Optional[str]) -> EraInfo:
    if not category:
        return EraInfo("한국 역사", "한국 문화")
    if category in CATEGORY_TO_ERA:
        return CATEGORY_TO_ERA[category]
    for key, info in CATEGORY_TO_ERA.items():
        if key in category or category in key:
            return info
    return EraInfo("한국 역사", category)


HISTORICAL_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("고조선", ("고조선", "단군")),
    ("단군", ("단군왕검", "고조선")),
    ("고구려", ("고구려", "광개토대왕")),
    ("백제", ("백제", "석탑")),
    ("신라", ("신라", "불국사")),
    ("통일신라", ("통일신라", "석굴암")),
    ("고려", ("고려", "청자")),
    ("세종", ("세종대왕", "훈민정음", "한글")),
    ("한글", ("한글", "훈민정음")),
    ("불국사", ("불국사", "석가탑")),
    ("첨성대", ("첨성대", "신라")),
    ("석굴암", ("석굴암", "불상")),
    ("거북선", ("거북선", "이순신")),
    ("이순신", ("이순신", "거북선", "임진왜란")),
    ("독립", ("독립운동", "만세")),
    ("3.1운동", ("3.1운동", "독립")),
    ("임진왜란", ("임진왜란", "조선")),
    ("팔만대장경", ("팔만대장경", "고려")),
    ("청자", ("고려청자", "청자")),
    ("백자", ("조선백자", "백자")),
    ("경복궁", ("경복궁", "궁궐")),
    ("훈민정음", ("훈민정음", "세종대왕")),
    ("금속활자", ("금속활자", "직지")),
)
MAX_KEYWORDS = 4


def extract_keywords(text: str, category: Optional[str] = None) -> List[str]:
    found: List[str] = []
    for trigger, keywords in HISTORICAL_KEYWORDS:
        if trigger in (text or ""):
            found.extend(keywords)
            if len(found) >= MAX_KEYWORDS:
                break

    if not found and category:
        found.append(category)

    # 순서를 유지한 채 중복 제거
    return list(dict.fromkeys(found))[:MAX_KEYWORDS]


def build_quiz_image_prompt(question: str, category: Optional[str] = None) -> str:
    era = category_to_era(category)
    keywords = extract_keywords(question, category) or [category or "한국역사"]
    return f"{era.era} {era.topic}: {', '.join(keywords)} - {question.strip()}"
