import logging
import re
from collections import Counter
from functools import lru_cache

import pymorphy3

logger = logging.getLogger(__name__)

# 非实词词性: 前置词、连词、语气词、感叹词
FUNCTION_WORD_TAGS = frozenset({"PREP", "CONJ", "PRCL", "INTJ"})

# Short high-frequency words the tagger does not always flag
STOP_WORDS = frozenset({"и", "в", "на", "с", "по", "за", "из", "у", "для"})

NON_LETTERS = re.compile(r"[^а-яё]+")


class Lemmatizer:
    """
    Text to lemma-frequency transform over Russian word forms.

    The instance holds no mutable state besides a parse cache, so one
    lemmatizer is shared by every crawl task and by the search engine.
    """

    def __init__(self, morph: pymorphy3.MorphAnalyzer | None = None, cache_size: int = 100_000):
        self.morph = morph or pymorphy3.MorphAnalyzer()
        self._parse = lru_cache(maxsize=cache_size)(self._parse_word)

    def _parse_word(self, word: str) -> tuple:
        try:
            return tuple(self.morph.parse(word))
        except Exception as e:
            logger.debug(f"Morphology failed for {word!r}: {e}")
            return ()

    @staticmethod
    def tokenize(text: str) -> list[str]:
        return NON_LETTERS.sub(" ", text.lower()).split()

    def extract_lemmas(self, text: str) -> dict[str, int]:
        """
        Map each content-word lemma of ``text`` to its occurrence count.

        Prepositions, conjunctions, particles and interjections are dropped,
        as are lemmas from ``STOP_WORDS``. Unparsable tokens are skipped.
        """
        counts: Counter[str] = Counter()
        if not text:
            return dict(counts)

        for token in self.tokenize(text):
            parses = self._parse(token)
            if not parses:
                continue
            best = parses[0]
            if best.tag.POS in FUNCTION_WORD_TAGS:
                continue
            lemma = best.normal_form
            if not lemma or lemma in STOP_WORDS:
                continue
            counts[lemma] += 1
        return dict(counts)

    def word_lemmas(self, word: str) -> list[str]:
        """All base forms of a single word, most probable first."""
        cleaned = NON_LETTERS.sub("", (word or "").lower())
        if not cleaned:
            return []
        forms: list[str] = []
        for parse in self._parse(cleaned):
            if parse.normal_form not in forms:
                forms.append(parse.normal_form)
        return forms


@lru_cache
def get_lemmatizer() -> Lemmatizer:
    # 加载词典较慢，全局只创建一次
    return Lemmatizer()
