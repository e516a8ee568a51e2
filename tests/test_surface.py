import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from click_reel.models import Point  # noqa: E402
from click_reel.surface import (  # noqa: E402
    OUT_OF_BOUNDS_PATH,
    ROOT_PATH,
    Node,
    Rect,
    Surface,
    element_path,
    sanitized_html,
)


def _find(root, node_id):
    return next(node for node in root.iter() if node.id == node_id)


def test_selector_matching_covers_compounds_and_combinators(page):
    email = _find(page, "email")
    brand = next(node for node in page.iter() if "brand" in node.classes)

    assert email.matches("input")
    assert email.matches("#email")
    assert email.matches('input[placeholder="you@example.com"]')
    assert email.matches("form input")
    assert email.matches("#signup > input")
    assert not email.matches("header input")
    assert brand.matches("header > .brand")
    assert brand.matches("nav a, .brand")
    assert not brand.matches("span.logo")
    assert [node.id for node in page.query_all("[data-screenshot-exclude]")] == ["toolbar"]


def test_closest_walks_up_to_matching_ancestor(page):
    email = _find(page, "email")

    assert email.closest("form") is _find(page, "signup")
    assert email.closest("header") is None


def test_element_path_prefers_test_id_then_id_then_structure(page):
    email = _find(page, "email")
    paragraph = next(node for node in page.iter() if node.tag == "p")
    labelled = page.append_child(Node("section", attributes={"data-testid": "promo", "id": "ignored"}))
    detached = Node("div")

    assert element_path(page, page) == ROOT_PATH
    assert element_path(email, page) == "#email"
    assert element_path(labelled, page) == '[data-testid="promo"]'
    assert element_path(paragraph, page) == "ROOT > form > p"
    assert element_path(detached, page) == OUT_OF_BOUNDS_PATH


def test_element_path_numbers_same_tag_siblings(page):
    form = _find(page, "signup")
    first = form.append_child(Node("span"))
    second = form.append_child(Node("span"))

    assert element_path(first, page) == "ROOT > form > span:nth-of-type(1)"
    assert element_path(second, page) == "ROOT > form > span:nth-of-type(2)"


def test_sanitized_html_strips_scripts_and_inline_handlers():
    root = Node("div", attributes={"onclick": "steal()", "class": "card"}, text="<b>hi</b>")
    root.append_child(Node("script", text="alert(1)"))
    root.append_child(Node("input", value="secret"))

    markup = sanitized_html(root)

    assert "onclick" not in markup
    assert "alert" not in markup
    assert "&lt;b&gt;hi&lt;/b&gt;" in markup
    assert '<input value="secret">' in markup
    assert markup.startswith('<div class="card">')


def test_dispatch_runs_capture_listeners_before_target_handlers(page, surface):
    calls = []
    button = _find(page, "submit")
    button.add_handler("click", lambda node, event: calls.append(("target", node.id)))
    page.add_handler("click", lambda node, event: calls.append(("ancestor", node.tag)))
    surface.add_listener("click", lambda event: calls.append(("capture", None)), capture=True)
    surface.add_listener("click", lambda event: calls.append(("bubble", None)))

    class Event:
        type = "click"
        target = button
        propagation_stopped = False

    surface.dispatch(Event())

    assert calls == [("capture", None), ("target", "submit"), ("ancestor", "body"), ("bubble", None)]


def test_capture_listener_can_stop_propagation(page, surface):
    calls = []
    button = _find(page, "submit")
    button.add_handler("click", lambda node, event: calls.append("target"))

    def stopper(event):
        event.propagation_stopped = True

    surface.add_listener("click", stopper, capture=True)

    class Event:
        type = "click"
        target = button
        propagation_stopped = False

    surface.dispatch(Event())
    surface.remove_listener("click", stopper, capture=True)
    surface.dispatch(Event())

    assert calls == ["target"]


def test_node_at_returns_deepest_hit_and_to_document_adds_scroll(page):
    surface = Surface(page, scroll=Point(0, 250))

    assert surface.node_at(Point(120, 115)) is _find(page, "submit")
    assert surface.node_at(Point(300, 170)) is page
    assert surface.to_document(Point(10, 10)) == Point(10, 260)


def test_rect_offset_and_containment():
    rect = Rect(100, 50, 80, 30)

    assert rect.offset_of(Point(110, 60)) == Point(10, 10)
    assert rect.contains(Point(180, 80))
    assert not rect.contains(Point(181, 80))
