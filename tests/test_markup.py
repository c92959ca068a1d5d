from __future__ import annotations

from a11yview.markup import parent_summary, parse


def test_elements_record_line_column_and_source() -> None:
    doc = parse('<div>\n  <span class="a b">x</span>\n</div>', source="app/views/x.html.erb")
    span = doc.find_all("span")[0]
    assert (span.line, span.col) == (2, 2)
    assert span.source == "app/views/x.html.erb"
    assert span.classes == ("a", "b")
    assert parent_summary(span).tag == "div"


def test_paragraphs_close_implicitly() -> None:
    doc = parse("<div><p>one<p>two</div>")
    div = doc.find_all("div")[0]
    assert [c.tag for c in div.element_children()] == ["p", "p"]
    assert [p.text() for p in div.element_children()] == ["one", "two"]


def test_list_items_and_cells_close_implicitly() -> None:
    doc = parse("<ul><li>a<li>b</ul><table><tr><td>1<td>2<tr><td>3</table>")
    assert len(doc.find_all("ul")[0].element_children()) == 2
    assert [len(tr.element_children()) for tr in doc.find_all("tr")] == [2, 1]


def test_void_elements_take_no_children() -> None:
    doc = parse('<p><img src="a.png"><span>t</span></p>')
    img = doc.find_all("img")[0]
    assert img.children == []
    assert img.next_element().tag == "span"


def test_stray_end_tags_are_ignored_and_unclosed_tags_tolerated() -> None:
    doc = parse("<div></span><p>x</p></div><section><h2>open")
    assert [n.tag for n in doc.find_all()] == ["div", "p", "section", "h2"]
    assert doc.find_all("p")[0].parent.tag == "div"


def test_text_skips_scripts_and_normalizes_whitespace() -> None:
    doc = parse("<p>Hello\n   <b>world</b><script>var x = 1;</script></p>")
    assert doc.find_all("p")[0].text() == "Hello world"


def test_ids_and_dynamic_attributes() -> None:
    doc = parse('<a id="x"></a><b id="x"></b><i id="DYNAMIC_CONTENT-y" title="DYNAMIC_CONTENT"></i>')
    ids = doc.ids()
    assert [n.tag for n in ids["x"]] == ["a", "b"]
    assert doc.has_id("x")
    assert not doc.has_id("z")
    i = doc.find_all("i")[0]
    assert i.is_dynamic("title")
    assert not i.is_dynamic("id-missing")


def test_ancestors_and_closest() -> None:
    doc = parse("<form><label>Name <input id='n'></label></form>")
    node = doc.find_all("input")[0]
    assert [a.tag for a in node.ancestors()] == ["label", "form"]
    assert node.closest("form").tag == "form"
    assert node.closest("table") is None
