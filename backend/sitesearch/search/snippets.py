import html
import re

from sitesearch.text.lemmatizer import Lemmatizer

WORD_RE = re.compile(r"[0-9A-Za-zА-Яа-яЁё]+")

ELLIPSIS = "..."


def _span(words: list[re.Match], first: int, last: int) -> int:
    return words[last].end() - words[first].start()


class SnippetBuilder:
    """
    Highlighted excerpts around runs of query-lemma matches.

    A word matches when any of its base forms is a query lemma. Matches at
    most ``max_gap`` words apart form one run; each run is quoted with
    ``context_words`` words on both sides and matched words wrapped in
    ``<b>``. Fragments are added until ``max_length`` characters of page
    text have been quoted; a window that does not fit loses context words
    around its run before the run itself is cut.
    """

    def __init__(self, lemmatizer: Lemmatizer, max_length: int = 300, context_words: int = 6, max_gap: int = 2):
        self.lemmatizer = lemmatizer
        self.max_length = max_length
        self.context_words = context_words
        self.max_gap = max_gap

    def is_match(self, word: str, query_lemmas: set[str]) -> bool:
        return any(form in query_lemmas for form in self.lemmatizer.word_lemmas(word))

    def build(self, text: str, query_lemmas: set[str]) -> str:
        if not text or not query_lemmas:
            return ""
        words = list(WORD_RE.finditer(text))
        matched = [i for i, m in enumerate(words) if self.is_match(m.group(), query_lemmas)]
        if not matched:
            return ""

        windows = self._windows(self._runs(matched), len(words))
        matched_set = set(matched)

        fragments = []
        quoted = 0
        head = tail = 0
        for first, last, run_first, run_last in windows:
            if quoted >= self.max_length:
                break
            budget = self.max_length - quoted
            first, last = self._fit(words, first, last, run_first, run_last, budget)
            if fragments and _span(words, first, last) > budget:
                break
            if not fragments:
                head = first
            quoted += _span(words, first, last)
            fragments.append(self._render(text, words, first, last, matched_set))
            tail = last

        snippet = f" {ELLIPSIS} ".join(fragments)
        if head > 0:
            snippet = f"{ELLIPSIS} {snippet}"
        if tail < len(words) - 1:
            snippet = f"{snippet} {ELLIPSIS}"
        return snippet

    def _runs(self, matched: list[int]) -> list[tuple[int, int]]:
        runs = []
        start = prev = matched[0]
        for index in matched[1:]:
            if index - prev > self.max_gap:
                runs.append((start, prev))
                start = index
            prev = index
        runs.append((start, prev))
        return runs

    def _windows(self, runs: list[tuple[int, int]], word_count: int) -> list[tuple[int, int, int, int]]:
        """Context windows as (first, last, first match, last match) word indexes."""
        windows: list[tuple[int, int, int, int]] = []
        for first, last in runs:
            lo = max(0, first - self.context_words)
            hi = min(word_count - 1, last + self.context_words)
            if windows and lo <= windows[-1][1] + 1:
                windows[-1] = (windows[-1][0], hi, windows[-1][2], last)
            else:
                windows.append((lo, hi, first, last))
        return windows

    @staticmethod
    def _fit(
        words: list[re.Match], first: int, last: int, run_first: int, run_last: int, budget: int
    ) -> tuple[int, int]:
        # 先从上下文较多的一侧裁剪，再从右侧截断匹配段
        while _span(words, first, last) > budget and (first < run_first or last > run_last):
            if run_first - first >= last - run_last:
                first += 1
            else:
                last -= 1
        while last > first and _span(words, first, last) > budget:
            last -= 1
        return first, last

    @staticmethod
    def _render(text: str, words: list[re.Match], first: int, last: int, matched: set[int]) -> str:
        parts = []
        for i in range(first, last + 1):
            if i > first:
                parts.append(html.escape(text[words[i - 1].end():words[i].start()]))
            word = html.escape(words[i].group())
            parts.append(f"<b>{word}</b>" if i in matched else word)
        return "".join(parts)
