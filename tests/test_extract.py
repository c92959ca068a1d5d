from __future__ import annotations

import pytest

from a11yview.extract import DYNAMIC_PLACEHOLDER, expand_output, extract, find_includes
from a11yview.types import ExtractionError


TEMPLATE = """<div class="card">
<% if user.admin?
     && feature_on? %>
  <p><%= user.name %></p>
<% end %>
<%# a comment
    spanning lines %>
  <span>static</span>
</div>
"""


def test_extraction_keeps_line_count() -> None:
    result = extract(TEMPLATE)
    assert result.markup.count("\n") == TEMPLATE.count("\n")
    assert len(result.markup.splitlines()) == len(TEMPLATE.splitlines())


def test_every_markup_line_maps_to_same_source_line() -> None:
    result = extract(TEMPLATE)
    pm = result.position_map
    for line in range(1, pm.line_count + 1):
        assert pm.source_line(line) == line


def test_output_region_becomes_placeholder_and_silent_regions_vanish() -> None:
    markup = extract(TEMPLATE).markup
    assert "<p>DYNAMIC_CONTENT</p>" in markup
    assert "<%" not in markup
    assert "admin?" not in markup
    assert "comment" not in markup
    assert "<span>static</span>" in markup


def test_regions_are_recorded_with_kind_and_line() -> None:
    regions = extract(TEMPLATE).regions
    kinds = [(r.kind, r.line) for r in regions]
    assert kinds == [("silent", 2), ("output", 4), ("silent", 5), ("comment", 6)]
    assert regions[1].code == "user.name"


def test_unterminated_region_is_an_extraction_error_with_line() -> None:
    with pytest.raises(ExtractionError) as info:
        extract("<p>\n<%= link_to 'x', y\n</p>\n", path="app/views/a.html.erb")
    assert info.value.line == 2
    assert info.value.path == "app/views/a.html.erb"
    assert str(info.value).startswith("app/views/a.html.erb:2:")


def test_escaped_end_marker_does_not_close_region() -> None:
    assert extract("<p><%= '100%%>' %></p>").markup == "<p>DYNAMIC_CONTENT</p>"


def test_escaped_start_marker_stays_literal() -> None:
    markup = extract("<p><%% raw %></p>").markup
    assert markup == "<p>&lt;% raw %></p>"


def test_trim_mode_end_marker() -> None:
    assert extract("<li><%= item -%></li>").markup == "<li>DYNAMIC_CONTENT</li>"


def test_image_tag_expands_with_and_without_alt() -> None:
    assert extract('<%= image_tag "logo.png" %>').markup == '<img src="logo.png">'
    assert extract('<%= image_tag "logo.png", alt: "Logo" %>').markup == '<img src="logo.png" alt="Logo">'
    assert extract("<%= image_tag 'x.png', alt: t('.logo') %>").markup == f'<img src="x.png" alt="{DYNAMIC_PLACEHOLDER}">'


def test_link_to_with_literal_text_and_block_form() -> None:
    assert extract('<%= link_to "Profile", profile_path %>').markup == '<a href="DYNAMIC_CONTENT">Profile</a>'
    markup = extract("<%= link_to user_path(@u) do %><i></i><% end %>").markup
    assert markup == '<a href="DYNAMIC_CONTENT"><i></i></a>'


def test_block_end_of_plain_ruby_block_is_blank() -> None:
    markup = extract("<% @items.each do |i| %><li><%= i %></li><% end %>").markup
    assert "<li>DYNAMIC_CONTENT</li>" in markup
    assert markup.strip() == "<li>DYNAMIC_CONTENT</li>"


def test_form_helpers_expand_to_labelable_markup() -> None:
    assert extract('<%= label_tag :email, "Email" %>').markup == '<label for="email">Email</label>'
    assert extract("<%= email_field_tag :email %>").markup == '<input type="email" name="email" id="email">'
    assert extract("<%= f.text_field :email %>").markup == f'<input type="text" id="{DYNAMIC_PLACEHOLDER}_email">'
    assert extract("<%= f.label :email %>").markup == f'<label for="{DYNAMIC_PLACEHOLDER}_email">Email</label>'
    assert extract('<%= f.submit "Save" %>').markup == '<input type="submit" value="Save">'


def test_aria_label_option_is_carried_over() -> None:
    markup = expand_output('text_field_tag :q, nil, aria: { label: "Search" }')
    assert 'aria-label="Search"' in markup


def test_render_and_yield_become_composition_markers() -> None:
    result = extract('<%= render "shared/navbar" %>\n<%= yield %>\n<%= render partial: "form", locals: {} %>')
    assert '<template-include data-partial="shared/navbar">DYNAMIC_CONTENT</template-include>' in result.markup
    assert "<template-yield>DYNAMIC_CONTENT</template-yield>" in result.markup
    assert result.includes == ["shared/navbar", "form"]
    assert [r.kind for r in result.regions] == ["include", "yield", "include"]


def test_find_includes_works_on_raw_text() -> None:
    source = "<%= render 'a' %><%= render @users %><%= render 'a' %>\n<%= unfinished"
    assert find_includes(source) == ["a", "user"]


def test_position_map_offsets_are_monotonic() -> None:
    source = "ab<%= x %>cd\nef"
    result = extract(source)
    pm = result.position_map
    assert result.markup == "abDYNAMIC_CONTENTcd\nef"
    assert pm.source_offset(0) == 0
    assert pm.source_offset(5) == 2
    assert pm.source_offset(result.markup.index("cd")) == source.index("cd")
    assert pm.line_of(result.markup.index("ef")) == 2
    mapped = [pm.source_offset(i) for i in range(len(result.markup) + 1)]
    assert mapped == sorted(mapped)


def test_multiline_region_maps_inner_lines() -> None:
    source = "<%\n\n%>X"
    result = extract(source)
    pm = result.position_map
    assert result.markup.count("\n") == 2
    assert [pm.source_line(i) for i in (1, 2, 3)] == [1, 2, 3]
    assert pm.source_position(3, 0) == (3, 2)
