"""网页读取工具：抓取 URL 并抽取正文。"""

import logging
from typing import Any, Dict, List, Optional

import httpx
import trafilatura

from .definitions import ToolDef, ToolParam, ToolSpec

USER_AGENT = "Mozilla/5.0 (compatible; chat-core/0.1)"


class UrlReaderService:
    def __init__(self, timeout: float = 10.0, max_chars: int = 5000, logger: Optional[logging.Logger] = None):
        self._timeout = timeout
        self._max_chars = max_chars
        self._logger = logger or logging.getLogger("chat_core.tools.url_reader")

    def fetch_html(self, url: str) -> str:
        with httpx.Client(timeout=self._timeout, trust_env=False, follow_redirects=True) as client:
            resp = client.get(url, headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
            return resp.text

    def extract_text(self, html: str) -> str:
        text = trafilatura.extract(html, include_comments=False, include_tables=True)
        if not text:
            text = trafilatura.extract(html, include_comments=False, include_tables=True, favor_recall=True)
        return (text or "").strip()

    def get_url_content(self, args: Dict[str, Any]) -> str:
        url = args["url"]
        if not url.startswith(("http://", "https://")):
            return f"无法读取「{url}」：只支持 http:// 或 https:// 开头的网址"
        try:
            html = self.fetch_html(url)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            self._logger.warning("URL fetch returned error status", extra={"extra": {"url": url, "status": status}})
            return f"读取「{url}」失败了：服务器返回 HTTP {status}"
        except httpx.HTTPError as e:
            self._logger.warning("URL fetch failed", extra={"extra": {"url": url, "error": str(e)}})
            return f"读取「{url}」失败了：网络连接出错，抱歉🙏"

        text = self.extract_text(html)
        if not text:
            return f"没能从「{url}」中提取到正文内容"
        if len(text) > self._max_chars:
            text = text[: self._max_chars] + "..."
        self._logger.info("URL content extracted", extra={"extra": {"url": url, "chars": len(text)}})
        return text


def url_reader_tool_specs(reader: UrlReaderService) -> List[ToolSpec]:
    return [
        ToolSpec(
            ToolDef(
                name="get_url_content",
                description="读取网页并返回其主要文本内容",
                params={
                    "url": ToolParam(
                        name="url",
                        description="要读取的网页完整网址，例如 https://example.com/article",
                        required=True,
                        schema={"type": "string"},
                    )
                },
                usage_hint="用户贴出网址，或让你“读一下这篇文章”“这个网站写了什么”时使用",
            ),
            reader.get_url_content,
        )
    ]
