from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
PYTHON_SRC = ROOT / "python"

if str(PYTHON_SRC) not in sys.path:
    sys.path.insert(0, str(PYTHON_SRC))
else:
    sys.path.remove(str(PYTHON_SRC))
    sys.path.insert(0, str(PYTHON_SRC))


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def app(tmp_path: Path) -> Path:
    """Minimal project tree: layout, two views sharing a partial, one unrelated view."""
    views = tmp_path / "app" / "views"
    _write(
        views / "layouts" / "application.html.erb",
        "<html>\n<body>\n<%= render 'shared/navbar' %>\n<main>\n<%= yield %>\n</main>\n</body>\n</html>\n",
    )
    _write(views / "shared" / "_navbar.html.erb", '<nav class="navbar">\n  <a href="/">Home</a>\n</nav>\n')
    _write(views / "users" / "_form.html.erb", '<form>\n  <input type="text" id="name">\n</form>\n')
    _write(views / "users" / "new.html.erb", "<h1>New user</h1>\n<%= render 'form' %>\n")
    _write(views / "users" / "edit.html.erb", "<h1>Edit user</h1>\n<%= render 'form' %>\n")
    _write(views / "home" / "index.html.erb", "<h1>Welcome</h1>\n<p>Hello</p>\n")
    _write(tmp_path / "app" / "helpers" / "application_helper.rb", "module ApplicationHelper\nend\n")
    return tmp_path
