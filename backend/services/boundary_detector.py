"""Structural landmark detection for segmentation.

Each detector is a pure function returning its own landmark list.
``detect_landmarks`` runs them in precedence order and merges the results,
collapsing landmarks that fall within ``COLLISION_DISTANCE`` characters of a
landmark that was already accepted.
"""
import re
from typing import Callable, List

from models.chunk import Landmark, HEADER, PARAGRAPH_BREAK, LIST_ITEM

COLLISION_DISTANCE = 5

MARKDOWN_HEADER_REGEX = re.compile(r'^(#{1,6})\s+(.+)$', re.MULTILINE)
NUMBERED_SECTION_REGEX = re.compile(
    r'^(?:\d+\.|\d+\)|Section\s+\d+[:.)]?)\s*.+$',
    re.MULTILINE | re.IGNORECASE
)
ALL_CAPS_HEADER_REGEX = re.compile(r'^[A-Z][A-Z\s]+[A-Z]$')
PARAGRAPH_BREAK_REGEX = re.compile(r'\n\n+')
LIST_ITEM_REGEX = re.compile(r'^(?:[-*•]\s+|\d+[.)]\s+)', re.MULTILINE)

# Sentence end: terminal punctuation, optional closing quote, then whitespace
SENTENCE_BOUNDARY_REGEX = re.compile(r'[.!?]["\']?\s+')


def detect_markdown_headers(text: str) -> List[Landmark]:
    return [
        Landmark(
            position=match.start(),
            text=match.group(2).strip(),
            level=len(match.group(1)),
            kind=HEADER
        )
        for match in MARKDOWN_HEADER_REGEX.finditer(text)
    ]


def detect_numbered_sections(text: str) -> List[Landmark]:
    return [
        Landmark(position=match.start(), text=match.group(0).strip(), level=2, kind=HEADER)
        for match in NUMBERED_SECTION_REGEX.finditer(text)
    ]


def detect_all_caps_headers(text: str) -> List[Landmark]:
    """Short all-uppercase lines (3-99 characters once trimmed)."""
    landmarks = []
    position = 0
    for line in text.split('\n'):
        trimmed = line.strip()
        if 3 <= len(trimmed) < 100 and ALL_CAPS_HEADER_REGEX.match(trimmed):
            landmarks.append(Landmark(position=position, text=trimmed, level=2, kind=HEADER))
        position += len(line) + 1
    return landmarks


def detect_paragraph_breaks(text: str) -> List[Landmark]:
    return [
        Landmark(position=match.start(), text="", level=0, kind=PARAGRAPH_BREAK)
        for match in PARAGRAPH_BREAK_REGEX.finditer(text)
    ]


def detect_list_items(text: str) -> List[Landmark]:
    return [
        Landmark(position=match.start(), text=match.group(0).strip(), level=0, kind=LIST_ITEM)
        for match in LIST_ITEM_REGEX.finditer(text)
    ]


# Highest precedence first
DETECTORS: List[Callable[[str], List[Landmark]]] = [
    detect_markdown_headers,
    detect_numbered_sections,
    detect_all_caps_headers,
    detect_paragraph_breaks,
    detect_list_items,
]


def merge_landmarks(groups: List[List[Landmark]]) -> List[Landmark]:
    """
    Merge landmark groups given in precedence order.

    A landmark closer than COLLISION_DISTANCE to an accepted landmark is
    dropped, so the higher-precedence detection wins.

    Args:
        groups: Landmark lists, highest precedence first

    Returns:
        Accepted landmarks sorted by position
    """
    accepted: List[Landmark] = []
    for group in groups:
        for landmark in group:
            if any(abs(landmark.position - kept.position) < COLLISION_DISTANCE for kept in accepted):
                continue
            accepted.append(landmark)
    return sorted(accepted, key=lambda landmark: landmark.position)


def detect_landmarks(text: str) -> List[Landmark]:
    """Run every detector over the text and merge the results."""
    if not text:
        return []
    return merge_landmarks([detector(text) for detector in DETECTORS])


def find_sentence_boundaries(text: str, start: int, end: int) -> List[int]:
    """Offsets just past each sentence end found in text[start:end]."""
    window = text[start:end]
    return [start + match.end() for match in SENTENCE_BOUNDARY_REGEX.finditer(window)]


def find_paragraph_breaks(text: str, start: int, end: int) -> List[int]:
    """Offsets of each paragraph break found in text[start:end]."""
    window = text[start:end]
    return [start + match.start() for match in PARAGRAPH_BREAK_REGEX.finditer(window)]
