import pytest
from bs4 import BeautifulSoup

from flowscrape.extract import (
    NoMatches,
    ParseError,
    attr_or_data_value,
    extract_field,
    find_blocks,
    next_page_link,
)
from flowscrape.payload import Field, Filter
from flowscrape.utils import rel_url

BASE = "http://example.com/persons/page-0"

CARDS = """
<html><body>
<div id="cards">
  <div class="card"><h2><a href="/persons/1"> Alice </a></h2><p class="price">10</p></div>
  <div class="card"><h2><a href="/persons/2"> Bob </a></h2><p class="price">20</p></div>
  <div class="card"><h2><a href="/persons/3"> Carol </a></h2><p class="price">30</p></div>
</div>
</body></html>
"""


def soup(html):
    return BeautifulSoup(html, "html.parser")


def test_extract_text_with_filter():
    fld = Field(name="Names", selector="a", attrs=["text"], filters=[Filter("trim")])
    result = extract_field(fld, soup('<div><a href="/x"> Alice </a></div>'), BASE)
    assert result == {"Names_text": "Alice"}


def test_extract_multiple_matches_gives_list():
    fld = Field(name="Names", selector="a", attrs=["text"], filters=[Filter("trim")])
    result = extract_field(fld, soup("<a> A </a><a> B </a>"), BASE)
    assert result == {"Names_text": ["A", "B"]}


def test_extract_href_is_resolved():
    fld = Field(name="Link", selector="a", attrs=["href"])
    result = extract_field(fld, soup('<a href="/persons/1">x</a>'), BASE)
    assert result["Link_href"] == "http://example.com/persons/1"


def test_extract_path_uses_href():
    fld = Field(name="Link", selector="a", attrs=["path"])
    result = extract_field(fld, soup('<a href="page-2">x</a>'), BASE)
    assert result == {"Link_path": rel_url(BASE, "page-2")}


def test_extract_outer_html_and_plain_attribute():
    fld = Field(name="Img", selector="img", attrs=["outerHtml", "alt"])
    result = extract_field(fld, soup('<div><img alt="photo"/></div>'), BASE)
    assert result["Img_alt"] == "photo"
    assert result["Img_outerHtml"].startswith("<img")
    assert 'alt="photo"' in result["Img_outerHtml"]


def test_filter_error_on_attribute_empties_value():
    fld = Field(name="Img", selector="img", attrs=["alt"], filters=[Filter("unknown")])
    result = extract_field(fld, soup('<img alt="photo"/>'), BASE)
    assert result == {"Img_alt": ""}


def test_missing_attribute_raises_with_partial_results():
    fld = Field(name="Img", selector="img", attrs=["alt", "title"])
    with pytest.raises(NoMatches) as excinfo:
        extract_field(fld, soup('<img alt="photo"/>'), BASE)
    assert excinfo.value.partial == {"Img_alt": "photo"}


def test_no_matching_elements_raises():
    fld = Field(name="Names", selector=".absent", attrs=["text"])
    with pytest.raises(NoMatches):
        extract_field(fld, soup("<p>x</p>"), BASE)


def test_attr_or_data_value_class():
    element = soup('<div class=" card   mb-3 "></div>').div
    assert attr_or_data_value(element) == ".card.mb-3"


def test_attr_or_data_value_id_and_tag():
    assert attr_or_data_value(soup('<div id="cards"></div>').div).startswith("#")
    assert attr_or_data_value(soup('<div id="cards"></div>').div)[1:] == "cards"
    assert attr_or_data_value(soup("<section></section>").section) == "section"
    assert attr_or_data_value(soup('<tr class=""></tr>').tr) == "tr"
    assert attr_or_data_value(None) == ""


def test_find_blocks_returns_each_card():
    fields = [
        Field(name="Names", selector="#cards a", attrs=["text"]),
        Field(name="Price", selector=".price", attrs=["text"]),
    ]
    blocks = find_blocks(CARDS, fields)
    assert len(blocks) == 3
    assert all("card" in block.get("class") for block in blocks)
    names = [extract_field(fields[0], block, BASE)["Names_text"].strip() for block in blocks]
    assert names == ["Alice", "Bob", "Carol"]
    prices = [extract_field(fields[1], block, BASE)["Price_text"] for block in blocks]
    assert prices == ["10", "20", "30"]


def test_find_blocks_single_field_uses_direct_parent():
    fields = [Field(name="Names", selector="#cards a", attrs=["text"])]
    blocks = find_blocks(CARDS, fields)
    assert len(blocks) == 3
    assert {block.name for block in blocks} == {"h2"}


def test_find_blocks_without_body_tag():
    html = '<ul class="items"><li><b>1</b></li><li><b>2</b></li></ul>'
    blocks = find_blocks(html, [Field(name="N", selector="li b", attrs=["text"])])
    assert [block.get_text() for block in blocks] == ["1", "2"]


def test_find_blocks_no_selectors():
    with pytest.raises(ParseError):
        find_blocks(CARDS, [Field(name="X", selector=".absent", attrs=["text"])])


def test_find_blocks_no_fields():
    with pytest.raises(ParseError):
        find_blocks(CARDS, [])


def test_next_page_link():
    html = '<nav><a class="page-link" href="/persons/page-1">Next</a></nav>'
    assert next_page_link(html, ".page-link", BASE) == rel_url(BASE, "/persons/page-1")


def test_next_page_link_first_of_many_and_none():
    html = '<a class="p" href="a.html">1</a><a class="p" href="b.html">2</a>'
    assert next_page_link(html, ".p", BASE) == rel_url(BASE, "a.html")
    assert next_page_link(html, ".missing", BASE) is None