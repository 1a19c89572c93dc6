"""Domain vocabulary for course-entity extraction.

Regex catalogs and word lists used by the EntityExtractor: course names,
student names, locations, teachers, recurrence markers and confirmations,
plus the course-name normalization rules shared with stored records.
"""

from __future__ import annotations

import re

CJK = r"一-鿿"

# =============================================================================
# Course names
# =============================================================================

# Ordered from most to least specific; combined names first so they are not split
COURSE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        # Combined subjects
        r"(物理實驗|化學實驗|生物實驗|科學實驗|自然實驗|AI程式設計|3D建模|機器人製作|網頁設計|數據分析|機器學習)課?",
        # Language skills
        r"(英語會話|中文會話|日語會話|韓語會話|法語會話|英語口語|英語聽力|英語寫作)課?",
        # Science and crafts
        r"(自然科學|生活科技|手工藝|實驗|科技|工藝|美勞|勞作)課?",
        # Arts and sports
        r"(鋼琴|小提琴|大提琴|吉他|爵士鼓|薩克斯風|長笛|二胡|古箏|琵琶|笛子|唱歌|聲樂|合唱|舞蹈|芭蕾|"
        r"街舞|國標舞|民族舞|現代舞|繪畫|素描|水彩|油畫|國畫|書法|陶藝|雕塑|直排輪|游泳|籃球|足球|"
        r"排球|網球|桌球|羽毛球|棒球|跆拳道|空手道|柔道|劍道|瑜珈|瑜伽|有氧|健身|田徑|體操|攀岩|滑板)課?",
        # School subjects
        r"(數學|國文|中文|英文|英語|物理|化學|生物|歷史|地理|公民|音樂|美術|體育|電腦|程式|作文|閱讀|"
        r"口語|聽力|發音|文法|單字|會話)課?",
        # Languages
        r"(日文|日語|韓文|韓語|法文|法語|德文|德語|西班牙文|西班牙語|義大利文|義大利語|俄文|俄語|阿拉伯文|阿拉伯語)課?",
        # Modern courses
        r"(程式設計|網頁製作|多媒體|動畫製作|遊戲設計|創客|STEAM|robotics|coding)課?",
    )
)

# Lowest priority: any word followed by a class suffix
GENERIC_COURSE_PATTERN = re.compile(
    rf"([{CJK}\w]{{2,8}}?(?:課程|課堂|課|班|學習|訓練|教學|指導))"
)

# Tokens that mark a candidate as time/location/student noise
COURSE_NOISE = re.compile(
    rf"(前台|後台|下午|上午|晚上|早上|中午|明天|今天|後天|昨天|[0-9]+點|小[{CJK}]{{1,2}}"
    r"|什麼|哪些|哪|幾|所有|全部|我的|週|星期)"
)

# Words stripped from the front of a generic match
NOISE_PREFIX = re.compile(
    r"^(?:今天|明天|後天|昨天|前天|早上|上午|中午|下午|晚上|傍晚|"
    r"[0-9零一二兩三四五六七八九十]+[點時](?:半|[0-9]+分?)?|前台|後台|[一二三四五]樓|"
    r"取消|刪除|刪掉|移除|修改|調整|更改|新增|查詢|查看|預約|報名|安排|"
    r"幫我|我要|我想|請|我|要上|要|上|在|的)"
)

MIN_COURSE_LENGTH = 2
MAX_COURSE_LENGTH = 10

# Generic words that never name a specific course
INVALID_COURSE_NAMES: frozenset[str] = frozenset({"上課", "課", "課程", "上學", "學習", "讀書"})

SPECIAL_COURSE_SUFFIXES: tuple[str, ...] = ("學習", "班", "訓練", "培訓", "輔導", "指導", "課程", "課堂")

COURSE_ALIASES: dict[str, str] = {
    "英語課": "英文課",
    "中文課": "國文課",
    "數學課程": "數學課",
    "英文課程": "英文課",
    "物理課程": "物理課",
    "化學課程": "化學課",
    "生物課程": "生物課",
    "歷史課程": "歷史課",
    "地理課程": "地理課",
}


def normalize_course_name(name: str | None) -> str | None:
    """Canonical course name: class suffix added, duplicates collapsed, aliases applied.

    Args:
        name: Raw course name such as "數學", "數學課課" or "英語課"

    Returns:
        Normalized name, or None for empty input
    """
    if not name or not isinstance(name, str):
        return None
    normalized = name.strip()
    if not normalized:
        return None

    if not normalized.endswith("課") and not normalized.endswith(SPECIAL_COURSE_SUFFIXES):
        normalized += "課"
    normalized = re.sub(r"課課+$", "課", normalized)
    return COURSE_ALIASES.get(normalized, normalized)


def is_known_course_word(word: str) -> bool:
    """Whether a word (with or without 課) is in the course catalog."""
    if not word:
        return False
    return any(pattern.fullmatch(word) for pattern in COURSE_PATTERNS)


def strip_noise_prefix(candidate: str) -> str:
    """Remove leading date, time, location and filler words."""
    previous = None
    while candidate and candidate != previous:
        previous = candidate
        candidate = NOISE_PREFIX.sub("", candidate, count=1)
    return candidate


def _with_suffix(candidate: str) -> str:
    return candidate if candidate.endswith("課") else candidate + "課"


def find_course_in_catalog(text: str) -> str | None:
    """Look up a course name using the vocabulary catalog.

    Specific subjects are tried first, then the generic "X課/X班" form with
    any leading date/time/location words cut off.
    """
    if not text:
        return None

    for pattern in COURSE_PATTERNS:
        match = pattern.search(text)
        if match:
            return _with_suffix(match.group(0))

    for match in GENERIC_COURSE_PATTERN.finditer(text):
        candidate = strip_noise_prefix(match.group(1).strip())
        if COURSE_NOISE.search(candidate):
            continue
        if not MIN_COURSE_LENGTH <= len(candidate) <= MAX_COURSE_LENGTH:
            continue
        if candidate in INVALID_COURSE_NAMES:
            continue
        return _with_suffix(candidate)

    return None


# =============================================================================
# Smart segmentation
# =============================================================================

# "[date][location][day-part][hour][student]course" in one pass
SMART_SEGMENT = re.compile(
    r"^(?P<date>今天|明天|後天|昨天)?"
    r"(?P<location>前台|後台|一樓|二樓|三樓|四樓|五樓)?"
    r"(?P<vague>下午|上午|晚上|早上|中午)?"
    r"(?P<specific>(?:十一|十二|一|兩|二|三|四|五|六|七|八|九|十|[0-9]{1,2})點半?)?"
    rf"(?P<student>小[{CJK}])?"
    rf"(?P<course>[{CJK}]+?課)$"
)


# =============================================================================
# Students
# =============================================================================

STUDENT_EXCLUDE_WORDS: frozenset[str] = frozenset(
    {
        # Time words
        "今天", "明天", "昨天", "後天", "前天", "下週", "每週", "每天", "本週", "這週", "上週",
        "週一", "週二", "週三", "週四", "週五", "週六", "週日",
        "星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日",
        "上午", "下午", "晚上", "早上", "中午", "傍晚", "今晚", "明晚", "週末", "平日", "假日",
        "上次", "下次", "這次", "每次", "之前", "之後", "以前", "以後", "最近", "剛才", "等等",
        "晚餐後", "午餐後", "早餐後", "放學後", "下課後", "睡前", "月初", "月底", "上個月", "下個月",
        # Function words
        "課表", "課程", "安排", "時間", "查詢", "修改", "取消", "新增", "看看", "檢查",
        "老師", "教室", "地點", "學校", "補習", "才藝", "清空", "提醒", "所有", "全部",
        # Conversational filler
        "不對", "錯了", "不是", "對了", "好的", "謝謝", "請問", "麻煩", "幫忙", "可以",
        "沒有", "還有", "那個", "這個", "然後", "所以", "應該", "確認", "確定",
    }
)

# Characters that never appear inside a student name here
STUDENT_REJECT_CHARS = re.compile(r"[的我你他她們請幫嗎呢吧了課班教學習程術藝師授]")
# Relative-time words such as 飯後 or 考試前
STUDENT_REJECT_ENDINGS: tuple[str, ...] = ("後", "前")

_STUDENT_BOUNDARY = rf"(?=後天|明天|今天|下週|本週|這週|課|的|有|安排|時間|[^{CJK}]|$)"

STUDENT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("sentence_start", re.compile(rf"^([小大][{CJK}]{{1,2}}){_STUDENT_BOUNDARY}")),
    ("sentence_start", re.compile(rf"^([{CJK}]{{2,3}}){_STUDENT_BOUNDARY}")),
    (
        "sentence_start",
        re.compile(
            r"^([A-Za-z]{2,10})(?=後天|明天|今天|下週|本週|這週|課|的|有|安排|時間|早上|下午|晚上|點|[^A-Za-z]|$)"
        ),
    ),
    ("sentence_middle", re.compile(rf"(?:查詢|看看|檢查)([小大][{CJK}]{{1,2}})(?:[^{CJK}]|$)")),
    ("sentence_middle", re.compile(rf"(?:查詢|看看|檢查)([{CJK}]{{2,3}})(?:[^{CJK}]|$)")),
    ("sentence_middle", re.compile(r"(?:查詢|看看|檢查)([A-Za-z]{2,10})(?:[^A-Za-z]|$)")),
    ("sentence_middle", re.compile(rf"([小大][{CJK}]{{1,2}})(?:的|有什麼|怎麼|狀況)")),
    ("sentence_middle", re.compile(rf"([{CJK}]{{2,3}})(?:的|有什麼|怎麼|狀況)")),
    (
        "sentence_middle",
        re.compile(r"([A-Za-z]{2,10})(?:的|有什麼|怎麼|狀況|課表|表現如何|表現怎麼樣)"),
    ),
)

# Suffixes stripped when a "course name" may really be a student in a schedule query
STUDENT_QUERY_SUFFIXES: tuple[str, ...] = ("的課程", "的安排", "的課", "課表", "課程", "安排", "課", "班")
SCHEDULE_QUERY_MARKERS: tuple[str, ...] = ("課表", "課程", "安排")
COURSE_WORDS_IN_NAMES: tuple[str, ...] = (
    "課", "班", "教", "學", "習", "程", "術", "藝", "運動", "語言", "class", "course", "lesson",
)


def is_valid_student_name(name: str | None) -> bool:
    """Exclude-list check for a positional student-name candidate."""
    if not name or name in STUDENT_EXCLUDE_WORDS:
        return False
    if len(name) < 2 or len(name) > (10 if name.isascii() else 4):
        return False
    if not (re.fullmatch(rf"[{CJK}]+", name) or re.fullmatch(r"[A-Za-z]+", name)):
        return False
    if STUDENT_REJECT_CHARS.search(name) or name.endswith(STUDENT_REJECT_ENDINGS):
        return False
    return not is_known_course_word(name)


def looks_like_student_not_course(name: str | None) -> bool:
    """Whether a bare name (suffix already stripped) is a person rather than a subject."""
    if not name or not 2 <= len(name) <= 10:
        return False
    if not (re.fullmatch(rf"[{CJK}]+", name) or re.fullmatch(r"[A-Za-z]+", name)):
        return False
    lowered = name.lower()
    if any(word in lowered for word in COURSE_WORDS_IN_NAMES):
        return False
    return not is_known_course_word(name)


# =============================================================================
# Location, teacher, confirmation
# =============================================================================

LOCATION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"在(.+?)教室",
        r"在(.+?)上課",
        r"地點[：:]\s*(\S+)",
        r"([A-Za-z0-9]+|[一-鿿]{1,4})教室",
        r"([A-Za-z0-9一-鿿]{1,6}?)大樓",
        r"(前台|後台|一樓|二樓|三樓|四樓|五樓)",
    )
)

LOCATION_SUFFIXES: tuple[str, ...] = ("樓", "教室", "室", "館", "中心", "家", "校", "台")

TEACHER_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        rf"上([{CJK}]{{1,3}}?)老師",
        rf"上([{CJK}]{{1,3}}?)教授",
        rf"跟([{CJK}]{{1,3}}?)老師",
        rf"([{CJK}]{{1,3}}?)老師的",
        rf"([{CJK}]{{1,3}}?)教授的",
        rf"老師[：:]\s*([{CJK}]{{1,3}})",
        rf"教授[：:]\s*([{CJK}]{{1,3}})",
    )
)

CONFIRMATION_PHRASES: dict[str, str] = {
    "確認": "確認清空",
    "確認清空": "確認清空",
}


# =============================================================================
# Recurrence
# =============================================================================

# 天天 after a date character is 今天天氣 or 明天天母, not a recurrence
RECURRENCE_TRIGGER = re.compile(
    r"每週|每周|每星期|每個星期|每禮拜|weekly|每天|每日|(?<![今明後昨前])天天|daily|每月|每個月|monthly|"
    r"重複|定期|固定|循環|週期性",
    re.IGNORECASE,
)
WEEKLY_DAY = re.compile(r"(?:每週|每周|每星期|每個星期|每禮拜)([一二三四五六日天])")
WEEKLY = re.compile(r"每週|每周|每星期|每個星期|每禮拜|weekly", re.IGNORECASE)
DAILY = re.compile(r"每天|每日|(?<![今明後昨前])天天|daily", re.IGNORECASE)
MONTHLY = re.compile(r"每月|每個月|monthly", re.IGNORECASE)
MONTH_DAY = re.compile(r"(\d{1,2})[號日]")

WEEKDAY_CODES: dict[str, str] = {
    "一": "mon",
    "二": "tue",
    "三": "wed",
    "四": "thu",
    "五": "fri",
    "六": "sat",
    "日": "sun",
    "天": "sun",
}

MONTH_POSITIONS: dict[str, int] = {"月初": 1, "月中": 15, "月底": 30}


def detect_recurrence(text: str | None) -> str | None:
    """Recurrence pattern such as "daily", "weekly:tue" or "monthly:15".

    Generic markers (重複, 固定, ...) without a period default to weekly.
    """
    if not text or not RECURRENCE_TRIGGER.search(text):
        return None

    match = WEEKLY_DAY.search(text)
    if match:
        return f"weekly:{WEEKDAY_CODES[match.group(1)]}"
    if WEEKLY.search(text):
        return "weekly"
    if DAILY.search(text):
        return "daily"
    if MONTHLY.search(text):
        day_match = MONTH_DAY.search(text)
        if day_match and 1 <= int(day_match.group(1)) <= 31:
            return f"monthly:{int(day_match.group(1))}"
        for word, day in MONTH_POSITIONS.items():
            if word in text:
                return f"monthly:{day}"
        return "monthly"
    return "weekly"


# =============================================================================
# Intent-aware heuristics
# =============================================================================

_CHANGE_VERBS = "修改|取消|刪除|調整|更改|變更|改成|改到|換成|換到|請假"

MODIFY_HEURISTICS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"^([^\s修改取消刪除調整更改變更換請把]+?)(?={_CHANGE_VERBS})"),
    re.compile(rf"(?:把|將)([^\s]+?)(?={_CHANGE_VERBS}|的時間)"),
    re.compile(r"^([^改\s]+)改成"),
    re.compile(r"^([^換\s]+)換成"),
    re.compile(rf"(?:{_CHANGE_VERBS})([{CJK}A-Za-z]{{2,8}}?)(?:課|班|$)"),
)

RECORD_HEURISTICS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^([^今明後下週月日年時點分\d\s]+)(?=課|班|時間|在|上)"),
    re.compile(r"([^今明後下週月日年時點分\d\s]+)課"),
    re.compile(r"([^今明後下週月日年時點分\d\s]+)班"),
)

GENERIC_HEURISTICS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"([{CJK}A-Za-z]+)課"),
    re.compile(rf"([{CJK}A-Za-z]+)班"),
)

HEURISTIC_EXCLUDE_WORDS: frozenset[str] = frozenset(
    {"今天", "明天", "後天", "下週", "本週", "這週", "時間", "分鐘", "小時", "幫我", "我要", "我的"}
)


__all__ = [
    "COURSE_ALIASES",
    "CONFIRMATION_PHRASES",
    "INVALID_COURSE_NAMES",
    "LOCATION_PATTERNS",
    "SMART_SEGMENT",
    "STUDENT_PATTERNS",
    "TEACHER_PATTERNS",
    "detect_recurrence",
    "find_course_in_catalog",
    "is_known_course_word",
    "is_valid_student_name",
    "looks_like_student_not_course",
    "normalize_course_name",
]
