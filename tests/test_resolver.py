from __future__ import annotations

from pathlib import Path

import pytest

from a11yview.resolver import InclusionGraph, ViewResolver, attribute_element
from a11yview.routes import ConventionRouter, RouteMatch, RouteTable, normalize_path
from a11yview.types import ConfigurationError, ElementContext, ParentSummary


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _resolver(app: Path, router=None) -> ViewResolver:
    return ViewResolver(app / "app" / "views", ("erb",), router, root=app)


def _view(app: Path, rel: str) -> Path:
    return (app / "app" / "views" / rel).resolve()


def test_route_resolves_view_layout_and_fragments(app: Path) -> None:
    r = _resolver(app).resolve("/users/new")
    assert r.primary_template == _view(app, "users/new.html.erb")
    assert r.layout_template == _view(app, "layouts/application.html.erb")
    assert r.fragments == [_view(app, "users/_form.html.erb"), _view(app, "shared/_navbar.html.erb")]
    assert r.route.endpoint == "users#new"
    assert r.scope == "page"
    assert r.ambiguity is None
    ctx = r.page_context()
    assert ctx.identity == "/users/new"
    assert ctx.view_file == "app/views/users/new.html.erb"
    assert r.to_dict()["fragments"] == ["app/views/users/_form.html.erb", "app/views/shared/_navbar.html.erb"]


def test_root_route_falls_back_to_home_index(app: Path) -> None:
    r = _resolver(app).resolve("/")
    assert r.primary_template == _view(app, "home/index.html.erb")


def test_unresolvable_route_reports_ambiguity(app: Path) -> None:
    r = _resolver(app).resolve("/users/5")
    assert r.primary_template is None
    assert r.ambiguity is not None
    assert r.ambiguity.identity == "/users/5"
    assert r.ambiguity.reason == "no template matches this route"
    assert r.files == []


def test_route_table_takes_precedence(app: Path) -> None:
    r = _resolver(app, RouteTable({"/signup": "users#new"})).resolve("/signup")
    assert r.primary_template == _view(app, "users/new.html.erb")


def test_fuzzy_view_match_single_and_ambiguous(app: Path) -> None:
    views = app / "app" / "views"
    _write(views / "reports" / "monthly_summary.html.erb", "<h1>Monthly</h1>\n")
    _write(views / "exports" / "summary_a.html.erb", "<h1>A</h1>\n")
    _write(views / "exports" / "summary_b.html.erb", "<h1>B</h1>\n")
    resolver = _resolver(app)
    assert resolver.find_view("reports", "summary") == _view(app, "reports/monthly_summary.html.erb")
    r = resolver.resolve("/exports/summary")
    assert r.primary_template is None
    assert r.ambiguity.candidates == (
        "app/views/exports/summary_a.html.erb",
        "app/views/exports/summary_b.html.erb",
    )


def test_partial_file_identity_is_fragment_scoped(app: Path) -> None:
    r = _resolver(app).resolve("app/views/users/_form.html.erb")
    assert r.scope == "fragment"
    assert r.layout_template is None
    assert r.page_context().is_fragment


def test_view_file_identity_gets_layout(app: Path) -> None:
    r = _resolver(app).resolve("app/views/users/edit.html.erb")
    assert r.scope == "page"
    assert r.layout_template == _view(app, "layouts/application.html.erb")


def test_declared_and_controller_layouts(app: Path) -> None:
    views = app / "app" / "views"
    _write(views / "layouts" / "admin.html.erb", "<main><%= yield %></main>\n")
    _write(views / "layouts" / "reports.html.erb", "<main><%= yield %></main>\n")
    declared = _write(views / "dash" / "index.html.erb", '<% layout "admin" %>\n<h1>Dash</h1>\n')
    by_dir = _write(views / "reports" / "index.html.erb", "<h1>Reports</h1>\n")
    resolver = _resolver(app)
    assert resolver.find_layout(declared) == _view(app, "layouts/admin.html.erb")
    assert resolver.find_layout(by_dir) == _view(app, "layouts/reports.html.erb")


def test_cyclic_partials_terminate(app: Path) -> None:
    views = app / "app" / "views"
    _write(views / "loop" / "show.html.erb", "<%= render 'x' %>\n")
    _write(views / "loop" / "_x.html.erb", "<%= render 'y' %>\n")
    _write(views / "loop" / "_y.html.erb", "<%= render 'x' %>\n")
    resolver = _resolver(app)
    r = resolver.resolve("/loop/show")
    assert set(r.fragments) == {
        _view(app, "loop/_x.html.erb"),
        _view(app, "loop/_y.html.erb"),
        _view(app, "shared/_navbar.html.erb"),
    }
    graph = resolver.build_graph()
    assert set(graph.dependents(_view(app, "loop/_y.html.erb"))) == {
        _view(app, "loop/_y.html.erb"),
        _view(app, "loop/_x.html.erb"),
        _view(app, "loop/show.html.erb"),
    }


def test_inclusion_graph_traversals() -> None:
    a, b, c = Path("a"), Path("b"), Path("c")
    graph = InclusionGraph()
    graph.add_edge(a, b)
    graph.add_edge(b, c)
    graph.add_edge(c, a)
    graph.add_edge(a, b)
    assert len(graph) == 3
    assert graph.closure(a) == [a, b, c]
    assert graph.dependents(c) == [c, b, a]
    assert graph.includes(a) == [b]
    assert graph.included_by(b) == [a]
    assert graph.closure(Path("z")) == [Path("z")]


def test_pages_enumerates_full_views(app: Path) -> None:
    pages = _resolver(app).pages()
    assert [p.identity for p in pages] == [
        "app/views/home/index.html.erb",
        "app/views/users/edit.html.erb",
        "app/views/users/new.html.erb",
    ]
    form = _view(app, "users/_form.html.erb")
    assert [form in p.dependency_set for p in pages] == [False, True, True]
    assert all(_view(app, "layouts/application.html.erb") in p.dependency_set for p in pages)


def test_partial_lookup_order(app: Path) -> None:
    resolver = _resolver(app)
    new = _view(app, "users/new.html.erb")
    assert resolver.find_partial("form", new) == _view(app, "users/_form.html.erb")
    assert resolver.find_partial("navbar", new) == _view(app, "shared/_navbar.html.erb")
    assert resolver.find_partial("shared/navbar") == _view(app, "shared/_navbar.html.erb")
    assert resolver.find_partial("missing", new) is None


def test_attribute_element_heuristic(app: Path) -> None:
    r = _resolver(app).resolve("/users/new")
    nav_link = ElementContext(tag="a", href="/", parent=ParentSummary("nav", classes=("navbar",)))
    assert attribute_element(nav_link, r) == _view(app, "shared/_navbar.html.erb")
    in_main = ElementContext(tag="input", parent=ParentSummary("main"))
    assert attribute_element(in_main, r) == r.primary_template
    footer = ElementContext(tag="footer")
    assert attribute_element(footer, r) == r.layout_template
    plain = ElementContext(tag="img", parent=ParentSummary("div", classes=("card",)))
    assert attribute_element(plain, r) == r.primary_template
    unresolved = _resolver(app).resolve("/nowhere/at/all")
    assert attribute_element(nav_link, unresolved) is None


def test_convention_router() -> None:
    router = ConventionRouter()
    assert [m.endpoint for m in router.candidates("/")] == ["home#index", "pages#home", "home#about"]
    assert router.recognize("/users") == RouteMatch("users", "index")
    assert router.recognize("/users/5").endpoint == "users#show"
    assert router.recognize("/users/5/edit").endpoint == "users#edit"
    assert [m.endpoint for m in router.candidates("/admin/reports")] == ["admin#reports", "admin/reports#index"]


def test_route_table_params_and_normalization() -> None:
    table = RouteTable({"/users/:id": "users#show", "/files/*path": "files#show"})
    match = table.recognize("/users/42/?tab=1")
    assert match.endpoint == "users#show"
    assert dict(match.params) == {"id": "42"}
    assert dict(table.recognize("/files/a/b.txt").params) == {"path": "a/b.txt"}
    assert table.recognize("/nope") is None
    assert normalize_path("users/") == "/users"


def test_bad_route_target() -> None:
    with pytest.raises(ConfigurationError):
        RouteMatch.parse("users")
