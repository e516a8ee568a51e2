import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from click_reel.config import ObfuscationConfig  # noqa: E402
from click_reel.obfuscation import Obfuscator, replace_text, should_mask  # noqa: E402
from click_reel.surface import Node, sanitized_html  # noqa: E402


def _find(root, node_id):
    return next(node for node in root.iter() if node.id == node_id)


def test_replace_text_preserves_length_whitespace_and_punctuation():
    masked = replace_text("Hello, Jane! (42)", "*")

    assert masked == "*****, ****! (**)"
    assert len(masked) == len("Hello, Jane! (42)")
    assert replace_text("   ", "*") == "   "
    assert replace_text("", "*") == ""


def test_should_mask_precedence():
    config = ObfuscationConfig()
    root = Node("body")
    preserved = root.append_child(
        Node("div", attributes={"data-screenshot-preserve": "", "class": "sensitive"})
    )
    opted_in = root.append_child(Node("div", attributes={"data-screenshot-obfuscate": "", "class": "logo"}))
    excluded = root.append_child(Node("div", attributes={"data-screenshot-exclude": "true"}))
    logo = root.append_child(Node("div", attributes={"class": "logo sensitive"}))
    sensitive = root.append_child(Node("div", attributes={"class": "sensitive"}))
    plain = root.append_child(Node("div"))

    assert should_mask(preserved, config) is False
    assert should_mask(opted_in, config) is True
    assert should_mask(excluded, config) is False
    assert should_mask(logo, config) is False
    assert should_mask(sensitive, config) is True
    assert should_mask(plain, config) is True
    assert should_mask(plain, ObfuscationConfig(mask_by_default=False)) is False


def test_mask_then_restore_returns_exact_original_tree(page):
    page.append_child(
        Node(
            "div",
            attributes={"data-user": "jane", "data-testid": "profile"},
            style={"background-image": "url(avatar.png)"},
            text="Profile",
        )
    )
    before = sanitized_html(page)
    obfuscator = Obfuscator()

    backup = obfuscator.mask(page, ObfuscationConfig())
    masked = sanitized_html(page)
    obfuscator.restore(backup)

    assert masked != before
    assert sanitized_html(page) == before
    assert _find(page, "email").value == "jane@example.com"


def test_mask_applies_each_transform(page):
    profile = page.append_child(
        Node(
            "div",
            attributes={"data-user": "jane", "data-testid": "profile"},
            style={"background-image": "url(avatar.png)"},
        )
    )
    config = ObfuscationConfig(replacement_char="#", mask_color="#112233")

    Obfuscator().mask(page, config)

    email = _find(page, "email")
    paragraph = next(node for node in page.iter() if node.tag == "p")
    image = next(node for node in page.iter() if node.tag == "img")
    brand = next(node for node in page.iter() if "brand" in node.classes)
    toolbar = _find(page, "toolbar")

    assert email.value == "#" * len("jane@example.com")
    assert email.get_attribute("placeholder") == "#" * len("you@example.com")
    assert paragraph.text == "#####, ####!"
    assert image.get_attribute("src").startswith("data:image/png;base64,")
    assert image.get_attribute("alt") == "#### ###"
    assert profile.style["background-image"] == "none"
    assert profile.style["background-color"] == "#112233"
    assert profile.get_attribute("data-user") == "####"
    assert profile.get_attribute("data-testid") == "profile"
    assert brand.text == "Acme"
    assert toolbar.text == "Recorder UI"


def test_mask_skips_script_and_style_content():
    root = Node("body")
    script = root.append_child(Node("script", text="var token = 'abc';"))
    style = root.append_child(Node("style", text="body { color: red; }"))

    Obfuscator().mask(root, ObfuscationConfig())

    assert script.text == "var token = 'abc';"
    assert style.text == "body { color: red; }"


def test_disabled_transforms_leave_content_alone(page):
    config = ObfuscationConfig(
        obfuscate_text=False,
        obfuscate_images=False,
        obfuscate_inputs=False,
        obfuscate_data_attributes=False,
    )
    before = sanitized_html(page)

    backup = Obfuscator().mask(page, config)

    assert len(backup) == 0
    assert sanitized_html(page) == before


def test_restore_skips_detached_nodes_and_is_idempotent(page):
    obfuscator = Obfuscator()
    paragraph = next(node for node in page.iter() if node.tag == "p")
    email = _find(page, "email")

    backup = obfuscator.mask(page, ObfuscationConfig())
    paragraph.remove()
    obfuscator.restore(backup)
    obfuscator.restore(backup)

    assert paragraph.text == "█████, ████!"
    assert email.value == "jane@example.com"
    assert backup.restored is True
