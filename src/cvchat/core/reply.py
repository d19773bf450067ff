# src/cvchat/core/reply.py
from typing import List

from cvchat.core.constants import (
    EMPTY_REPLY_FALLBACK,
    FILLER_OPENERS,
    FILLER_TAILS,
    FILLER_TRANSITIONS,
    SENT_END,
    SENT_SPLIT,
)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENT_SPLIT.split(text or "") if s.strip()]


class ReplyCleaner:
    """Post-processes model output into a short, complete, filler-free answer."""

    def __init__(self, max_sentences: int = 3, fallback: str = EMPTY_REPLY_FALLBACK):
        self.max_sentences = max_sentences
        self.fallback = fallback

    def _drop_incomplete_tail(self, text: str) -> str:
        if SENT_END.search(text):
            return text
        sentences = split_sentences(text)
        complete = [s for s in sentences if SENT_END.search(s)]
        if complete:
            return " ".join(complete)
        # a single truncated sentence is still worth returning
        return text.rstrip(" ,;:-") + "."

    def _strip_filler(self, sentence: str) -> str:
        for pat in FILLER_OPENERS:
            sentence = pat.sub("", sentence)
        sentence = FILLER_TRANSITIONS.sub("", sentence)
        for pat in FILLER_TAILS:
            sentence = pat.sub("", sentence)
        sentence = sentence.strip()
        if sentence and sentence[0].islower():
            sentence = sentence[0].upper() + sentence[1:]
        return sentence

    def clean(self, reply: str) -> str:
        text = " ".join((reply or "").strip().strip('"').split())
        if not text:
            return self.fallback
        text = self._drop_incomplete_tail(text)

        kept = []
        for s in split_sentences(text):
            s = self._strip_filler(s)
            if len(s.strip(".!? ")) == 0:
                continue
            if not SENT_END.search(s):
                s += "."
            kept.append(s)
            if len(kept) >= self.max_sentences:
                break

        out = " ".join(kept).strip()
        return out or self.fallback
