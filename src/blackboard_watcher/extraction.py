"""
HTML extraction for Blackboard pages and feed fragments.

Pure functions that turn raw HTML into the plain text the sync engine
works with. Every function tolerates empty or structurally unexpected
input and returns an empty string / False instead of raising.
"""

import re
from typing import List

from bs4 import BeautifulSoup

# Decorations Blackboard renders inside a stream entry title
TITLE_DECORATION_SELECTOR = ", ".join(
    f'[class*="{marker}"]'
    for marker in ("inlineContextMenu", "announcementType", "announcementPosted")
)

# Two characters of markup residue trail every stream entry title
TITLE_TRAILING_ARTIFACT = 2

# Upload pages titled "复..." are the re-submission view ("复交作业")
ATTEMPTED_TITLE_MARKER = "复"

INSTRUCTION_CLASS = "vtbegenerated"
SUBMITTED_FILES_ID = "assignmentInfo"
REQUIRED_FILES_ID = "instructions"

TERM_SUFFIX_PATTERN = re.compile(r"\([^()]*\)$")


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def extract_title(html: str) -> str:
    """
    Extract a notice title from a stream entry's context HTML.

    Drops the context menu, type badge and posted-date badge before
    stripping the remaining tags.

    Args:
        html: The ``se_context`` fragment of a stream entry

    Returns:
        str: Plain-text title, or "" for empty input
    """
    if not html:
        return ""

    soup = _soup(html)
    for element in soup.select(TITLE_DECORATION_SELECTOR):
        if not element.decomposed:
            element.decompose()

    return soup.get_text().strip()[:-TITLE_TRAILING_ARTIFACT]


def extract_body(html: str) -> str:
    """Strip all tags from a notice body, keeping its text."""
    if not html:
        return ""
    return _soup(html).get_text().strip()


def has_been_attempted(html: str) -> bool:
    """
    Tell whether an assignment upload page shows a previous attempt.

    Blackboard titles the page "复交作业" (re-submit) instead of "上交作业"
    once something has been handed in. Pages without a title count as
    not attempted.

    Args:
        html: Upload / attempt page HTML

    Returns:
        bool: True if the page is the re-submission view
    """
    if not html:
        return False

    title = _soup(html).title
    if title is None:
        return False

    return title.get_text().strip().startswith(ATTEMPTED_TITLE_MARKER)


def extract_instruction(html: str) -> str:
    """
    Extract assignment instructions and attachment names from an upload page.

    Already attempted assignments list the files handed in; open ones list
    the files provided with the instructions. Each link becomes one
    ``附件N：<label>`` line, numbered by its position in the list.

    Args:
        html: Upload / attempt page HTML

    Returns:
        str: Instruction text followed by attachment lines, or ""
    """
    if not html:
        return ""

    soup = _soup(html)
    parts: List[str] = []

    instruction = soup.find("div", class_=INSTRUCTION_CLASS)
    if instruction is not None:
        text = instruction.get_text().strip()
        if text:
            parts.append(text)

    if has_been_attempted(html):
        attachments = soup.find("div", id=SUBMITTED_FILES_ID)
    else:
        attachments = soup.find("li", id=REQUIRED_FILES_ID)

    if attachments is not None:
        for index, link in enumerate(attachments.find_all("a"), start=1):
            label = link.get_text().strip()
            if label:
                parts.append(f"附件{index}：{label}")

    return "\n".join(parts)


def remove_term_suffix(course_name: str) -> str:
    """Drop the trailing "(24-25学年第1学期)" style term marker from a course name."""
    return TERM_SUFFIX_PATTERN.sub("", course_name or "")
