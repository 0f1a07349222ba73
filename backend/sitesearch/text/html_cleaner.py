"""
HTML 文本提取工具

Strips non-content markup from crawled pages and returns the visible text
that the lemmatizer indexes and the snippet builder quotes.
"""
import re

from bs4 import BeautifulSoup, Comment


class HtmlCleaner:
    """Lightweight HTML to plain-text conversion."""

    # 对全文检索没有语义价值的标签
    JUNK_TAGS = ['style', 'script', 'svg', 'noscript', 'iframe', 'canvas', 'template']

    @staticmethod
    def parse(html: str) -> BeautifulSoup:
        return BeautifulSoup(html or "", 'html.parser')

    @staticmethod
    def visible_text(html: str) -> str:
        """
        Return the page text a reader would see.

        参数:
            html: 原始 HTML 内容

        返回:
            单个空格连接的可见文本
        """
        soup = HtmlCleaner.parse(html)

        # 1. 移除整个垃圾标签
        for tag in soup(HtmlCleaner.JUNK_TAGS):
            tag.decompose()

        # 2. 移除 HTML 注释
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        text = soup.get_text(separator=' ', strip=True)
        return re.sub(r'\s+', ' ', text).strip()

    @staticmethod
    def title(html: str) -> str:
        soup = HtmlCleaner.parse(html)
        if soup.title and soup.title.string:
            return soup.title.string.strip()
        return ""
