"""Tests for the Bangumi scraping adapter."""

from __future__ import annotations

import httpx
import pytest

from app.config import Settings
from app.models import ABSENT_RATING, MediaType, SourceType
from app.services.bangumi import BangumiAdapter

SEARCH_HTML = """
<html><body>
<ul id="browserItemList" class="browserFull">
  <li id="item_253" class="item odd clearit">
    <a href="/subject/253" class="subjectCover cover ll">
      <span class="image"><img src="//lain.bgm.tv/pic/cover/c/c9/f0/253_t3XPJ.jpg" class="cover"></span>
    </a>
    <div class="inner">
      <h3><a href="/subject/253" class="l">星际牛仔</a> <small class="grey">カウボーイビバップ</small></h3>
      <p class="info tip">1998年10月23日 / 26话 / 渡辺信一郎 / 矢立肇</p>
      <p class="rateInfo"><span class="starstop-s"></span> <small class="fade">9.1</small></p>
    </div>
  </li>
  <li id="item_999" class="item even clearit">
    <div class="inner">
      <h3><a href="/subject/999" class="l">无评分番剧</a></h3>
      <p class="info tip">2024年 / 某导演</p>
    </div>
  </li>
</ul>
</body></html>
"""

SUMMARY_HTML = """
<html><body><div id="subject_summary">2071年，人类移居太阳系各处。    赏金猎人们的故事。</div></body></html>
"""

DETAIL_HTML = """
<html><body>
<h1 class="nameSingle"><a href="/subject/253">カウボーイビバップ</a></h1>
<ul id="infobox">
  <li><span class="tip">中文名: </span>星际牛仔</li>
  <li><span class="tip">原名: </span>Cowboy Bebop</li>
  <li><span class="tip">话数: </span>26</li>
  <li><span class="tip">放送开始: </span>1998年10月23日</li>
  <li><span class="tip">导演: </span>渡辺信一郎</li>
  <li><span class="tip">音乐: </span>菅野よう子</li>
</ul>
<div class="global_score"><span class="number">9.1</span></div>
<img src="//lain.bgm.tv/pic/cover/l/c9/f0/253_t3XPJ.jpg" class="cover">
</body></html>
"""


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.mark.anyio("asyncio")
async def test_search_parses_items_and_attaches_summary() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.startswith("/subject_search/"):
            return httpx.Response(200, text=SEARCH_HTML)
        if request.url.path == "/subject/253":
            return httpx.Response(200, text=SUMMARY_HTML)
        raise httpx.ReadTimeout("slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        records = await BangumiAdapter(Settings(_env_file=None), client).search("星际 牛仔")

    assert len(records) == 2
    bebop, unrated = records

    assert bebop.source_type is SourceType.BANGUMI
    assert bebop.media_type is MediaType.ANIME
    assert bebop.source_id == "253"
    assert bebop.source_url == "https://bgm.tv/subject/253"
    assert bebop.title_zh == "星际牛仔"
    assert bebop.title_original == "カウボーイビバップ"
    assert bebop.release_date == "1998年10月23日"
    assert bebop.year == "1998"
    assert bebop.staff == "26话 / 渡辺信一郎 / 矢立肇"
    assert bebop.poster_url == "https://lain.bgm.tv/pic/cover/c/c9/f0/253_t3XPJ.jpg"
    assert bebop.rating_bangumi == 9.1
    assert bebop.summary == "2071年，人类移居太阳系各处。\n赏金猎人们的故事。"

    # No rating, no full release date and the summary fetch timed out.
    assert unrated.rating_bangumi == ABSENT_RATING
    assert unrated.release_date is None
    assert unrated.year == "2024"
    assert unrated.summary is None

    search_request = requests[0]
    assert search_request.url.params["cat"] == "2"
    assert "%20" in str(search_request.url)


@pytest.mark.anyio("asyncio")
async def test_get_detail_reads_infobox() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=DETAIL_HTML)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        record = await BangumiAdapter(Settings(_env_file=None), client).get_detail("253")

    assert record is not None
    assert record.title_zh == "カウボーイビバップ"
    assert record.title_original == "Cowboy Bebop"
    assert record.duration == "26"
    assert record.duration_label() == "26集"
    assert record.release_date == "1998年10月23日"
    assert record.rating_bangumi == 9.1
    assert record.staff == "导演: 渡辺信一郎 | 音乐: 菅野よう子"
    assert record.poster_url == "https://lain.bgm.tv/pic/cover/l/c9/f0/253_t3XPJ.jpg"
    # Missing synopsis stays absent rather than receiving placeholder text.
    assert record.summary is None
