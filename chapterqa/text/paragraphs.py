"""Deterministic paragraphization and time tagging of chapter segments.

Responsibilities:
- Split joined segment text into sentences without losing any content.
- Group sentences into 2-4 sentence paragraphs with a fixed closing rule.
- Attach approximate timestamps by mapping paragraph positions onto segments.
"""

from __future__ import annotations

import re
from typing import Sequence

from ..models.datatypes import Paragraph, Segment


class Paragraphizer:
    """Group consecutive segment text into reproducible, time-tagged paragraphs.

    A paragraph closes once it holds `MAX_SENTENCES` sentences, or once it holds
    at least `MIN_SENTENCES` sentences and `soft_chars` characters.
    """

    MIN_SENTENCES = 2
    MAX_SENTENCES = 4
    DEFAULT_SOFT_CHARS = 400
    _SENTENCE_TERMINALS = ".!?"
    _TRAILING_SENTENCE_CLOSERS = "\"')]}»”"
    _COMMON_ABBREVIATIONS = frozenset(
        {
            "mr.",
            "mrs.",
            "ms.",
            "dr.",
            "prof.",
            "sr.",
            "jr.",
            "st.",
            "etc.",
            "e.g.",
            "i.e.",
            "vs.",
            "no.",
            "fig.",
            "al.",
        }
    )
    _ACRONYM_PATTERN = re.compile(r"(?:[A-Za-z]\.){2,}$")

    def __init__(self, soft_chars: int = DEFAULT_SOFT_CHARS) -> None:
        if soft_chars <= 0:
            raise ValueError("soft_chars must be a positive integer.")
        self.soft_chars = soft_chars

    def paragraphs(self, segments: Sequence[Segment]) -> list[Paragraph]:
        """Return time-tagged paragraphs for chronologically ordered segments."""

        texts = self.paragraph_texts(segments)
        return self.tag(texts, segments)

    def paragraph_texts(self, segments: Sequence[Segment]) -> list[str]:
        """Return paragraph texts built from the segments' sentences."""

        joined = " ".join(segment.text for segment in segments if segment.text.strip())
        paragraphs: list[str] = []
        current: list[str] = []
        current_chars = 0
        for sentence in self.split_sentences(joined):
            current.append(sentence)
            current_chars += len(sentence)
            if len(current) >= self.MAX_SENTENCES or (
                len(current) >= self.MIN_SENTENCES and current_chars >= self.soft_chars
            ):
                paragraphs.append(" ".join(current))
                current = []
                current_chars = 0
        if current:
            paragraphs.append(" ".join(current))
        return paragraphs

    @staticmethod
    def tag(texts: Sequence[str], segments: Sequence[Segment]) -> list[Paragraph]:
        """Attach approximate start/end times to paragraph texts.

        Paragraph `i` of `n` takes the start of segment `floor(i / n * len(segments))`;
        its end is the next paragraph's start, or the last segment's end.
        """

        if not texts or not segments:
            return []
        paragraph_count = len(texts)
        segment_count = len(segments)
        starts = [
            segments[(position * segment_count) // paragraph_count].start_s
            for position in range(paragraph_count)
        ]
        tagged: list[Paragraph] = []
        for position, text in enumerate(texts):
            end_s = (
                starts[position + 1]
                if position + 1 < paragraph_count
                else segments[-1].end_s
            )
            tagged.append(Paragraph(start_s=starts[position], end_s=end_s, text=text))
        return tagged

    def split_sentences(self, text: str) -> list[str]:
        """Split text into stripped sentences covering all non-whitespace content."""

        sentences: list[str] = []
        text_length = len(text)
        start = 0
        index = 0
        while index < text_length:
            if text[index] in self._SENTENCE_TERMINALS and self._is_sentence_boundary(
                text, index
            ):
                end = index + 1
                while end < text_length and text[end] in self._SENTENCE_TERMINALS:
                    end += 1
                while end < text_length and text[end] in self._TRAILING_SENTENCE_CLOSERS:
                    end += 1
                if end == text_length or text[end].isspace():
                    sentence = text[start:end].strip()
                    if sentence:
                        sentences.append(sentence)
                    start = end
                index = end
                continue
            index += 1

        tail = text[start:].strip()
        if tail:
            sentences.append(tail)
        return sentences

    def _is_sentence_boundary(self, text: str, punctuation_index: int) -> bool:
        """Return whether punctuation at index terminates a sentence."""

        if text[punctuation_index] != ".":
            return True
        if self._is_decimal_period(text, punctuation_index):
            return False
        return not self._is_abbreviation_period(text, punctuation_index)

    @staticmethod
    def _is_decimal_period(text: str, punctuation_index: int) -> bool:
        if punctuation_index <= 0 or punctuation_index + 1 >= len(text):
            return False
        return text[punctuation_index - 1].isdigit() and text[punctuation_index + 1].isdigit()

    def _is_abbreviation_period(self, text: str, punctuation_index: int) -> bool:
        """Return whether a period belongs to a likely abbreviation token."""

        start = punctuation_index
        while start > 0 and text[start - 1].isalpha():
            start -= 1
        token = text[start : punctuation_index + 1].lower()
        if token in self._COMMON_ABBREVIATIONS:
            return True

        acronym_start = max(0, punctuation_index - 8)
        acronym_window = text[acronym_start : punctuation_index + 1]
        return bool(self._ACRONYM_PATTERN.search(acronym_window))
