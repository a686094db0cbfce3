from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import Contact

# Raw token -> canonical tag.
DEFAULT_TAG_MAPPING: Dict[str, str] = {
    "Museum": "Museum",
    "博物館": "Museum",
    "美術館": "Art Museum",
    "Art Venue": "Art Venue",
    "Art Center": "Art Center",
    "藝術中心": "Art Center",
    "Festival": "Festival",
    "藝術節": "Festival",
    "Gallery": "Gallery",
    "畫廊": "Gallery",
    "C-LAB": "C-LAB",
    "C-lab": "C-LAB",
    "臺灣當代文化實驗場": "C-LAB",
    "IRCAM": "IRCAM",
    "Ircam": "IRCAM",
    "Taicc": "TAICCA",
    "TAICCA": "TAICCA",
    "文策院": "TAICCA",
    "文化內容策進院": "TAICCA",
    "北藝中心": "TPAC",
    "TPAC": "TPAC",
    "兩廳院": "NTCH",
    "NTCH": "NTCH",
    "衛武營": "Weiwuying",
    "歌劇院": "NTT",
    "CMHK": "Contemporary Musiking Hong Kong",
    "現在音樂": "Contemporary Musiking Hong Kong",
    "Curator": "Curator",
    "策展人": "Curator",
    "策展": "Curator",
    "Director": "Director",
    "總監": "Director",
    "Admin": "Administration",
    "Administrator": "Administration",
    "行政": "Administration",
    "Producer": "Producer",
    "製作人": "Producer",
    "Artist": "Artist",
    "藝術家": "Artist",
    "教育": "Education",
    "Higher Education": "Education",
    "大學": "University",
    "University": "University",
    "Academic": "Academia",
    "科技": "Tech",
    "Technology": "Tech",
    "AI": "AI",
    "Artificial Intelligence": "AI",
    "藝術": "Art",
    "Arts": "Art",
    "音樂": "Music",
    "Music": "Music",
    "Sound Art": "Sound Art",
    "聲音藝術": "Sound Art",
    "New Media": "New Media",
    "新媒體": "New Media",
    "Government": "Government",
    "公部門": "Government",
    "CEO": "Executive",
    "Founder": "Founder",
    "Manager": "Management",
    "管理": "Management",
    "行銷": "Marketing",
}

DEFAULT_UPPERCASE_TOKENS = ["AI", "VR", "XR", "CEO", "CTO", "CFO", "MBA", "PHD", "USA", "UK", "EU"]

WORD_RE = re.compile(r"[A-Za-z0-9_]\S*")


@dataclass
class CompanyRule:
    """Company-driven standardization.

    ``keywords`` match as substrings of the company and add ``tag``;
    ``equals`` match the whole company, rename it to ``company`` and add ``tag``.
    """

    keywords: List[str] = field(default_factory=list)
    equals: List[str] = field(default_factory=list)
    company: str = ""
    tag: str = ""

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CompanyRule":
        return cls(
            keywords=[str(k) for k in payload.get("keywords", []) or []],
            equals=[str(k) for k in payload.get("equals", []) or []],
            company=str(payload.get("company", "") or ""),
            tag=str(payload.get("tag", "") or ""),
        )


@dataclass
class TaggingSettings:
    mapping: Dict[str, str] = field(default_factory=dict)
    uppercase_tokens: List[str] = field(default_factory=list)
    company_rules: List[CompanyRule] = field(default_factory=list)

    def merged_mapping(self) -> Dict[str, str]:
        merged = dict(DEFAULT_TAG_MAPPING)
        merged.update(self.mapping)
        return merged

    def normalized_uppercase(self) -> set[str]:
        return {token.upper() for token in DEFAULT_UPPERCASE_TOKENS + self.uppercase_tokens}


class TagNormalizer:
    def __init__(self, settings: Optional[TaggingSettings] = None):
        self.settings = settings or TaggingSettings()
        self.mapping = self.settings.merged_mapping()
        self.canonical = set(self.mapping.values())
        self.uppercase = self.settings.normalized_uppercase()

    def title_case(self, tag: str) -> str:
        if tag.upper() in self.uppercase:
            return tag.upper()
        return WORD_RE.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), tag)

    def normalize_tag(self, tag: str) -> str:
        token = (tag or "").strip()
        if not token:
            return ""
        if token in self.canonical:
            return token
        if token in self.mapping:
            return self.mapping[token]
        cased = self.title_case(token)
        return self.mapping.get(cased, cased)

    def normalize_tags(self, tags: Iterable[str]) -> List[str]:
        out: List[str] = []
        for tag in tags or []:
            canonical = self.normalize_tag(tag)
            if canonical and canonical not in out:
                out.append(canonical)
        return out

    def union(self, *tag_sets: Iterable[str]) -> List[str]:
        combined: List[str] = []
        for tags in tag_sets:
            combined.extend(tags or [])
        return self.normalize_tags(combined)


def apply_company_rules(contact: Contact, rules: Iterable[CompanyRule]) -> Tuple[Contact, bool]:
    tags = list(contact.tags)
    company = contact.company
    changed = False
    for rule in rules:
        if company and rule.equals and company in rule.equals:
            if rule.company and company != rule.company:
                company = rule.company
                changed = True
            if rule.tag and rule.tag not in tags:
                tags.append(rule.tag)
                changed = True
        elif company and any(keyword in company for keyword in rule.keywords):
            if rule.tag and rule.tag not in tags:
                tags.append(rule.tag)
                changed = True
    if not changed:
        return contact, False
    return contact.replace(company=company, tags=tags), True


__all__ = [
    "CompanyRule",
    "DEFAULT_TAG_MAPPING",
    "TagNormalizer",
    "TaggingSettings",
    "apply_company_rules",
]
