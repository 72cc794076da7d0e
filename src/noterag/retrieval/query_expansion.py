"""Rule-based query expansion for keyword scoring.

Nothing here calls a model: keywords are pulled out of the query, matched
against a small Korean/English synonym table and a few phrase rules, and
the related terms are handed to BM25 at a reduced weight. Vector search
always uses the query as typed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re

from .keyword import tokenize

DEFAULT_MAX_KEYWORDS = 8

STOP_WORDS = frozenset({
    # Korean particles, endings and fillers
    "이", "가", "을", "를", "에", "의", "로", "으로", "에서", "와", "과", "도", "은", "는",
    "이나", "거나", "하고", "에게", "한테", "께", "보다", "처럼", "같이", "만큼", "이랑", "랑",
    "하면", "으면", "면", "어서", "아서", "니까", "므로", "는데", "지만", "어도", "아도",
    "야", "이야", "거든", "더니", "다가", "그", "저", "이것", "저것", "그것",
    "누구", "무엇", "어디", "언제", "어떻게", "왜", "뭐", "뭘", "어떤",
    "있어", "없어", "했어", "있는", "없는", "하는", "된", "할", "수", "것", "거",
    "등", "중", "때", "년", "월", "일", "적",
    # English
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might", "can", "must",
    "and", "or", "but", "if", "then", "so", "because", "as", "until", "while",
    "of", "at", "by", "for", "with", "about", "against", "between", "into", "through",
    "during", "before", "after", "above", "below", "to", "from", "up", "down", "in", "out",
    "on", "off", "over", "under", "again", "further", "once",
    "i", "me", "my", "myself", "we", "our", "ours", "you", "your", "yours",
    "he", "him", "his", "she", "her", "hers", "it", "its", "they", "them", "their",
    "what", "which", "who", "whom", "this", "that", "these", "those", "am",
})

# Keys are matched lowercased.
SYNONYMS: dict[str, tuple[str, ...]] = {
    # AI / ML
    "ai": ("인공지능", "machine learning", "머신러닝", "artificial intelligence"),
    "인공지능": ("ai", "머신러닝", "딥러닝", "artificial intelligence"),
    "머신러닝": ("machine learning", "딥러닝", "인공지능"),
    "llm": ("language model", "언어 모델", "gpt", "transformer"),
    "언어 모델": ("llm", "language model", "transformer"),
    "에이전트": ("agent", "ai agent", "자동화"),
    "agent": ("에이전트", "assistant", "automation"),

    # Software development
    "개발자": ("developer", "프로그래머", "엔지니어", "engineer"),
    "developer": ("개발자", "programmer", "engineer"),
    "코딩": ("프로그래밍", "개발", "coding", "programming"),
    "programming": ("coding", "코딩", "프로그래밍"),
    "버그": ("bug", "오류", "에러", "issue"),
    "bug": ("버그", "defect", "error", "issue"),
    "배포": ("deploy", "deployment", "release", "릴리스"),
    "deployment": ("배포", "release", "rollout"),

    # Meetings and events
    "회의": ("meeting", "미팅", "sync", "standup"),
    "meeting": ("회의", "미팅", "sync", "standup"),
    "밋업": ("meetup", "모임", "행사", "커뮤니티"),
    "meetup": ("밋업", "모임", "event", "community"),
    "컨퍼런스": ("conference", "세미나", "행사"),
    "conference": ("컨퍼런스", "세미나", "summit", "talk"),

    # Research and writing
    "논문": ("paper", "연구", "research", "publication"),
    "paper": ("논문", "publication", "article"),
    "연구": ("research", "논문", "study", "experiment"),
    "research": ("연구", "study", "investigation"),
    "피드백": ("feedback", "리뷰", "review", "코멘트"),
    "feedback": ("피드백", "review", "comments"),

    # Health
    "병원": ("hospital", "clinic", "의료", "진료"),
    "hospital": ("병원", "clinic", "medical"),
    "운동": ("exercise", "workout", "헬스", "training"),
    "exercise": ("운동", "workout", "fitness", "training"),

    # Travel and transport
    "여행": ("travel", "trip", "journey", "관광"),
    "travel": ("여행", "trip", "journey"),
    "출장": ("business trip", "travel", "여행"),
    "비행기": ("flight", "항공", "airplane", "airport"),
    "flight": ("비행기", "항공", "airline", "airport"),
    "자율주행": ("self-driving", "autonomous", "robotaxi", "로보택시"),
    "robotaxi": ("로보택시", "self-driving", "autonomous", "자율주행"),

    # Shopping and money
    "마트": ("grocery", "supermarket", "장보기"),
    "grocery": ("마트", "supermarket", "groceries"),
    "예산": ("budget", "비용", "expense", "spending"),
    "budget": ("예산", "expense", "spending", "cost"),

    # Food
    "라면": ("ramen", "noodles", "컵라면"),
    "ramen": ("라면", "noodles"),
    "커피": ("coffee", "카페", "espresso", "latte"),
    "coffee": ("커피", "cafe", "espresso"),
    "김치": ("kimchi", "발효", "fermented"),
}

# Whole-query rules checked before the per-keyword table.
PHRASE_RULES: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (re.compile(r"자율주행(차|택시)?.*(타|탔)"), ("로보택시 체험", "robotaxi", "self-driving")),
    (re.compile(r"개발자.*(밋업|모임)|(밋업|모임).*개발자"), ("developer meetup", "개발자 모임", "community")),
    (re.compile(r"출장.*(쇼핑|마트)|(쇼핑|마트).*출장"), ("grocery", "마트", "shopping")),
    (re.compile(r"\bai\b.*에이전트|에이전트.*\bai\b", re.IGNORECASE), ("ai agent", "agent", "인공지능 에이전트")),
    (re.compile(r"회의.*(정리|요약)|meeting\s+notes", re.IGNORECASE), ("minutes", "회의록", "action items")),
)

_SPLIT_RE = re.compile(r"[\s,.?!;:'\"()\[\]{}]+")


@dataclass(frozen=True)
class ExpandedQuery:
    original: str
    keywords: list[str] = field(default_factory=list)
    expansions: list[str] = field(default_factory=list)

    def expansion_terms(self) -> list[str]:
        """Keyword-index tokens of the expansions that the query does not already contain."""
        query_terms = set(tokenize(self.original))
        out: dict[str, None] = {}
        for phrase in self.expansions:
            for term in tokenize(phrase):
                if term not in query_terms:
                    out[term] = None
        return list(out)


def extract_keywords(query: str) -> list[str]:
    """Lowercased words of ``query`` minus stop words and single characters."""
    words = [w for w in _SPLIT_RE.split(query.lower()) if len(w) > 1 and w not in STOP_WORDS]
    return list(dict.fromkeys(words))


def _contains(longer: str, shorter: str) -> bool:
    # ASCII needs 3 chars so "ai" does not match inside "said"; Hangul words are shorter.
    min_len = 3 if shorter.isascii() else 2
    return len(shorter) >= min_len and shorter in longer


def find_synonyms(keyword: str) -> list[str]:
    """Related terms for ``keyword``: direct table hits, then entries it contains or is part of.

    The containment match lets a Korean word with a particle attached
    (``마트에서``) pick up the entry for its stem (``마트``).
    """
    kw = keyword.lower()
    found: list[str] = list(SYNONYMS.get(kw, ()))
    for term, related in SYNONYMS.items():
        if term == kw:
            continue
        if _contains(kw, term) or _contains(term, kw):
            found.append(term)
            found.extend(related)
    return [s for s in dict.fromkeys(found) if s.lower() != kw]


def expand_query(query: str, max_keywords: int = DEFAULT_MAX_KEYWORDS) -> ExpandedQuery:
    """Keywords plus at most ``max_keywords`` expansions, phrase rules first."""
    keywords = extract_keywords(query)
    expansions: list[str] = []
    for pattern, terms in PHRASE_RULES:
        if pattern.search(query):
            expansions.extend(terms)
    for kw in keywords:
        expansions.extend(find_synonyms(kw))

    kw_set = set(keywords)
    unique = [e for e in dict.fromkeys(expansions) if e.lower() not in kw_set]
    return ExpandedQuery(original=query, keywords=keywords, expansions=unique[:max(0, max_keywords)])
